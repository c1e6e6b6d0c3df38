FORWARDED_FOR_HEADER = "x-forwarded-for"


def resolve_client_ip(headers, peer=None):
    """
    Best-effort originating IP for a request.

    The first x-forwarded-for entry is the client as seen by the first proxy.
    It is client-spoofable unless the edge proxy overwrites the header.
    No format validation: whatever is found is returned as-is.
    """
    forwarded = headers.get(FORWARDED_FOR_HEADER) if headers is not None else None
    if forwarded and isinstance(forwarded, str):
        return forwarded.split(",")[0].strip()
    return peer or None
