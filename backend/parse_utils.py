from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional


@dataclass
class ParseError(Exception):
    """
    Lightweight exception for a single value that could not be coerced.
    The config loader collects these instead of stopping at the first one.
    """

    error_code: str
    message: str
    status: int = 400


_DURATION_RE = re.compile(r"^\s*([0-9]+)\s*(ms|s|m|h|d|w|y)?\s*$", re.IGNORECASE)

_DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
    "y": timedelta(days=365.25),
}

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z0-9-]{2,}$")

# Plain ASCII decimal only: no "+5", "5_000" or non-ASCII digits
_INT_RE = re.compile(r"^-?[0-9]+$")


def parse_int(
    value: object,
    *,
    field: str,
    minimum: Optional[int] = None,
    error_code: Optional[str] = None,
    message: Optional[str] = None,
) -> int:
    """
    Parse an integer value, raising ParseError on failure.

    Parameters:
      - value: the raw input (string/number)
      - field: logical field name (used for default codes/messages)
      - minimum: optional lower bound (inclusive)
      - error_code: optional custom error code (default: f"invalid_{field}")
      - message: optional custom message (default: f"{field} must be an integer.")

    Returns: int
    """
    text = str(value).strip()
    if not _INT_RE.match(text):
        raise ParseError(
            error_code=error_code or f"invalid_{field}",
            message=message or f"{field} must be an integer.",
        )
    result = int(text)
    if minimum is not None and result < minimum:
        raise ParseError(
            error_code=error_code or f"invalid_{field}",
            message=message or f"{field} must be >= {minimum}.",
        )
    return result


def parse_duration(value: object, *, field: str) -> timedelta:
    """
    Parse a duration literal such as "7d", "12h", "30m" or "3600" (seconds).
    """
    match = _DURATION_RE.match(str(value))
    if match is None:
        raise ParseError(
            error_code=f"invalid_{field}",
            message=f"{field} must be a duration like 7d, 12h, 30m or a number of seconds.",
        )
    amount, unit = match.groups()
    try:
        return int(amount) * _DURATION_UNITS[(unit or "s").lower()]
    except (OverflowError, ValueError):
        raise ParseError(
            error_code=f"invalid_{field}",
            message=f"{field} is out of range.",
        )


def parse_email(value: object, *, field: str) -> str:
    text = str(value).strip()
    if not _EMAIL_RE.match(text):
        raise ParseError(
            error_code=f"invalid_{field}",
            message=f"{field} must be a valid email address.",
        )
    return text


def require_fields(data: dict, fields: list[str]) -> None:
    """
    Check that every listed key holds a non-blank value.
    Raises ParseError with code "missing_fields" naming all of them.
    """
    missing = [f for f in fields if not str(data.get(f) or "").strip()]
    if missing:
        raise ParseError(
            error_code="missing_fields",
            message=f"Missing required fields: {', '.join(missing)}.",
        )
