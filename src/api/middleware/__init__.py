"""API middleware modules."""

from .security import (
    SecurityHeadersMiddleware,
    RequestIDMiddleware,
    get_cors_origins,
)

__all__ = [
    "SecurityHeadersMiddleware",
    "RequestIDMiddleware",
    "get_cors_origins",
]
