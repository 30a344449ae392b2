from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """A write broke a unique key (user email, session token) or a user FK.

    ``field`` names the offending column so callers can map the failure to a
    user-facing conflict without parsing driver messages.
    """

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.field = field
        self.detail = dict(detail or {})
        if field:
            self.detail.setdefault("field", field)


__all__ = ["ConstraintViolation"]
