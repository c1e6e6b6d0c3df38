from datetime import datetime
from typing import Annotated, Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, StringConstraints, ValidationError

from telemetry_core.core.errors import ValidationFailure


def _json_number(value):
    # "48.8" and true are not numbers here
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("must be a number")
    return value


Number = Annotated[float, BeforeValidator(_json_number), Field(allow_inf_nan=False)]
NonEmptyStr = Annotated[str, StringConstraints(strict=True, min_length=1)]


class Record(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CreateUser(Record):
    username: Optional[str] = None
    phone: Optional[str] = None


class UpdateUser(Record):
    id: UUID
    username: Optional[str] = None
    phone: Optional[str] = None


class ConsentRequest(Record):
    user_id: NonEmptyStr
    consent_text: NonEmptyStr


class LocationReport(Record):
    user_id: NonEmptyStr
    latitude: Number
    longitude: Number
    accuracy: Optional[Number] = None


class CallEntry(Record):
    number: Any = None
    direction: Optional[str] = None
    started_at: Optional[datetime] = None
    duration_seconds: Optional[Number] = None


class CallReport(Record):
    user_id: NonEmptyStr
    calls: List[CallEntry]


class IpReport(Record):
    user_id: NonEmptyStr


SCHEMAS = {
    "register": CreateUser,
    "update": UpdateUser,
    "consent": ConsentRequest,
    "location": LocationReport,
    "calls": CallReport,
    "ip": IpReport,
}


def _field_name(loc):
    return ".".join(str(part) for part in loc) or "body"


def validate_record(endpoint: str, body) -> Record:
    """
    Check a parsed request body against the schema of `endpoint`.

    Returns the normalized record, or raises ValidationFailure naming every
    missing or malformed field. Registration bodies carrying an `id` are
    validated as updates.
    """
    if not isinstance(body, dict):
        raise ValidationFailure("request body must be a JSON object", ["body"])
    if endpoint == "register" and body.get("id") not in (None, ""):
        endpoint = "update"
    schema = SCHEMAS.get(endpoint)
    if schema is None:
        raise KeyError(f"no schema for endpoint {endpoint!r}")
    try:
        return schema.model_validate(body)
    except ValidationError as e:
        fields = []
        for err in e.errors():
            name = _field_name(err["loc"])
            if name not in fields:
                fields.append(name)
        raise ValidationFailure(f"invalid or missing field(s): {', '.join(fields)}", fields) from e
