from datetime import datetime, timezone
from typing import Optional

from flask import request

from ..errors import ValidationError


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def int_value(value, name: str, required: bool = True) -> Optional[int]:
    if value is None or value == '':
        if required:
            raise ValidationError(f"{name} is required")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


def requesting_user(required: bool = True) -> Optional[int]:
    """requesting_user_id from the query string, falling back to the JSON body."""
    value = request.args.get('requesting_user_id')
    if value is None:
        value = json_body().get('requesting_user_id')
    return int_value(value, 'requesting_user_id', required)


def parse_timestamp(value, name: str) -> Optional[datetime]:
    """ISO-8601 string to a naive UTC datetime."""
    if value is None or value == '':
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be an ISO-8601 timestamp")
    text = value[:-1] + '+00:00' if value.endswith('Z') else value
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 timestamp")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
