from __future__ import annotations

import re
from typing import Any


_ERROR_CODE_RE = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)*$")


class ServiceError(Exception):
    """Base typed error for the contact identity service.

    Goals:
    - Stable `code` for programmatic handling across clients.
    - Human-readable `message` for API consumers.
    - Optional `meta` payload for debugging (safe-to-expose only).
    """

    def __init__(
        self,
        *,
        code: str,
        message: str,
        status_code: int = 500,
        meta: dict[str, Any] | None = None,
    ) -> None:
        if not _ERROR_CODE_RE.fullmatch(code):
            raise ValueError(
                "Invalid error code. Expected dot-separated lowercase tokens, "
                f"got: {code!r}"
            )
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = int(status_code)
        self.meta = dict(meta or {})

    def to_public_dict(self, *, request_id: str | None) -> dict[str, Any]:
        payload: dict[str, Any] = {
            # Keep `detail` for compatibility with FastAPI error surfaces.
            "detail": self.message,
            "code": self.code,
        }
        if request_id:
            payload["request_id"] = request_id
        if self.meta:
            payload["meta"] = self.meta
        return payload


class ConflictError(ServiceError):
    def __init__(
        self,
        *,
        message: str = "Conflict",
        code: str = "request.conflict",
        meta: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, status_code=409, meta=meta)


class ValidationError(ServiceError):
    def __init__(
        self,
        *,
        message: str = "Validation error",
        code: str = "request.validation_error",
        meta: dict[str, Any] | None = None,
        status_code: int = 422,
    ):
        super().__init__(code=code, message=message, status_code=status_code, meta=meta)


class StorageError(ServiceError):
    """The backing store could not complete a transaction."""

    def __init__(
        self,
        *,
        message: str = "Storage unavailable",
        code: str = "storage.unavailable",
        meta: dict[str, Any] | None = None,
        status_code: int = 503,
    ):
        super().__init__(code=code, message=message, status_code=status_code, meta=meta)
