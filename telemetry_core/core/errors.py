"""
Failure taxonomy for the telemetry core.

Every failure carries the HTTP status the API layer answers with, so routes
never need to map exceptions by hand.
"""


class TelemetryError(Exception):
    http_status = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ValidationFailure(TelemetryError):
    """Missing or malformed field in a client payload (user error)."""
    http_status = 400

    def __init__(self, message: str, fields=None):
        super().__init__(message)
        self.fields = list(fields or [])


class UnknownUser(TelemetryError):
    http_status = 404

    def __init__(self, user_id: str):
        super().__init__(f"unknown user id: {user_id}")
        self.user_id = user_id


class PayloadTooLarge(TelemetryError):
    http_status = 413


class ConfigurationFailure(TelemetryError):
    """A required external credential or setting is absent."""


class StoreFailure(TelemetryError):
    """The store rejected a read or write. Never retried."""


class ProviderFailure(TelemetryError):
    def __init__(self, message: str, provider: str = "ipinfo"):
        super().__init__(message)
        self.provider = provider
