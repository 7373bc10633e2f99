from datetime import datetime, timezone
from typing import Any, Callable, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from surveykit.errors import InvalidInput, Unauthenticated
from surveykit.identity import Identity

SchemaType = TypeVar("SchemaType", bound=BaseModel)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def require_identity(identity: Optional[Identity]) -> Identity:
    if identity is None:
        raise Unauthenticated("Authentication required.")
    return identity


def coerce_payload(schema: Type[SchemaType], payload: Any) -> SchemaType:
    """Accept a schema instance or a plain mapping, raising ``InvalidInput``."""
    if isinstance(payload, schema):
        return payload
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(by_alias=True, exclude_unset=True)
    try:
        return schema.model_validate(payload)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or None
        message = first["msg"]
        if field:
            message = f"Invalid value for '{field}': {message}"
        raise InvalidInput(message, field=field) from e
