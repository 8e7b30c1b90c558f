"""Errors raised while reconciling contact identities."""

from __future__ import annotations

from typing import Any

from src.kernel.errors import ConflictError, ServiceError


class ConflictRace(ConflictError):
    """A concurrent resolution touched the same rows; the attempt can be replayed."""

    def __init__(
        self,
        *,
        message: str = "Concurrent identity update",
        code: str = "identity.conflict",
        meta: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, meta=meta)


class DataIntegrityError(ServiceError):
    """Stored contacts violate the one-primary-per-cluster linking rules."""

    def __init__(
        self,
        *,
        message: str = "Contact links are inconsistent",
        code: str = "identity.integrity_violation",
        meta: dict[str, Any] | None = None,
    ):
        super().__init__(code=code, message=message, status_code=500, meta=meta)
