"""Database models."""

from src.db.models.contacts import (
    Base,
    ContactRecord,
    LINK_PRECEDENCE_VALUES,
)

__all__ = [
    "Base",
    "ContactRecord",
    "LINK_PRECEDENCE_VALUES",
]
