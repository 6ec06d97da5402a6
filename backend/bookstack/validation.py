"""
Error taxonomy shared by services and routes.

- ValidationError: malformed/missing input (caller's fault, never retried)
- StateConflict:   illegal transition, quota or entitlement conflict; `code`
                   carries the reason so clients can react distinctly
- NotFoundError:   referenced record does not exist
- UpstreamFailure: blob store / mailer / invoice renderer failed

Anything else escaping a service is treated as fatal by the routes (500).
"""

from __future__ import annotations

import re
from typing import Any


class DomainError(Exception):
    """Base for errors that map onto a client-facing HTTP response."""

    status_code = 400
    code = "DOMAIN_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict | None = None):
        super().__init__(message)
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "details": self.details}


class ValidationError(DomainError):
    """400-level input problem."""

    status_code = 400
    code = "VALIDATION_ERROR"


class StateConflict(DomainError):
    """409-level business rule conflict."""

    status_code = 409
    code = "STATE_CONFLICT"


class NotFoundError(DomainError):
    status_code = 404
    code = "NOT_FOUND"


class UpstreamFailure(DomainError):
    status_code = 502
    code = "UPSTREAM_FAILURE"


# Maximum copies in a single order line; guards against typos like 1000000
MAX_LINE_QUANTITY = 1000

_PLAIN_INT_RE = re.compile(r"-?[0-9]+")


def require_positive_int(value: Any, field: str, *, maximum: int | None = None) -> int:
    """
    Strict integer coercion for JSON payload values.

    Rejects bools, floats, decimals-in-strings and scientific notation.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")

    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not _PLAIN_INT_RE.fullmatch(stripped):
            raise ValidationError(f"{field} must be a plain integer")
        result = int(stripped)
    else:
        raise ValidationError(f"{field} must be an integer")

    if result <= 0:
        raise ValidationError(f"{field} must be positive")
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} must be at most {maximum}")
    return result


def require_text(value: Any, field: str, *, max_length: int = 255) -> str:
    if value is None:
        raise ValidationError(f"{field} is required")
    text = str(value).strip()
    if not text:
        raise ValidationError(f"{field} is required")
    if len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def parse_page_list(value: Any, field: str = "bookmarks") -> list[int]:
    """Validate an ordered list of page numbers (positive integers)."""
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list of page numbers")
    return [require_positive_int(v, f"{field}[{i}]") for i, v in enumerate(value)]
