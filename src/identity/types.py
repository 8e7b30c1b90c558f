"""
Identity Resolution Type Definitions

Contact records, the attribute-match predicate used to look them up, and the
consolidated view returned to callers.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from abc import ABC, abstractmethod
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from src.kernel.errors import ValidationError
from src.kernel.time import coerce_utc


class LinkPrecedence(str, Enum):
    """Position of a contact within its identity cluster."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


class ResolutionOutcome(str, Enum):
    """What a single resolution changed in storage."""

    CREATED_PRIMARY = "created_primary"
    CREATED_SECONDARY = "created_secondary"
    MERGED = "merged"
    MERGED_AND_CREATED = "merged_and_created"
    UNCHANGED = "unchanged"


class Contact(BaseModel):
    """A stored contact record."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: int
    email: str | None = None
    phone_number: str | None = None
    link_precedence: LinkPrecedence
    linked_id: int | None = None
    created_at: datetime
    updated_at: datetime | None = None

    @property
    def is_primary(self) -> bool:
        return self.link_precedence == LinkPrecedence.PRIMARY

    @property
    def recency_key(self) -> tuple[datetime, int]:
        """Sort key: oldest first, id breaks identical timestamps."""
        return (coerce_utc(self.created_at), self.id)


def oldest_first(contacts: Iterable[Contact]) -> list[Contact]:
    return sorted(contacts, key=lambda contact: contact.recency_key)


# =============================================================================
# Attribute matching
# =============================================================================


def _present(value: str | None) -> str | None:
    """Strip a submitted value; blank counts as absent."""
    if value is None:
        return None
    value = value.strip()
    return value or None


class ContactMatch(ABC):
    """
    Tagged predicate selecting contacts by identifying attribute.

    Only the variants below are instantiable. Use
    `ContactMatch.from_attributes()` to build one; it picks the variant that
    matches the attributes actually supplied (blank values count as absent).
    """

    email: str | None = None
    phone_number: str | None = None

    @abstractmethod
    def matches(self, contact: Contact) -> bool:
        ...

    @property
    def pair(self) -> tuple[str | None, str | None]:
        return (self.email, self.phone_number)

    @classmethod
    def from_attributes(cls, email: str | None, phone_number: str | None) -> "ContactMatch":
        email = _present(email)
        phone_number = _present(phone_number)
        if email is not None and phone_number is not None:
            return MatchByEither(email=email, phone_number=phone_number)
        if email is not None:
            return MatchByEmail(email=email)
        if phone_number is not None:
            return MatchByPhone(phone_number=phone_number)
        raise ValidationError(
            message="Email or phoneNumber required",
            code="identity.attributes_required",
            status_code=400,
        )


@dataclass(frozen=True)
class MatchByEmail(ContactMatch):
    email: str

    def matches(self, contact: Contact) -> bool:
        return contact.email == self.email


@dataclass(frozen=True)
class MatchByPhone(ContactMatch):
    phone_number: str

    def matches(self, contact: Contact) -> bool:
        return contact.phone_number == self.phone_number


@dataclass(frozen=True)
class MatchByEither(ContactMatch):
    email: str
    phone_number: str

    def matches(self, contact: Contact) -> bool:
        return contact.email == self.email or contact.phone_number == self.phone_number


# =============================================================================
# Consolidated view
# =============================================================================


def _unique(values: Iterable[str | None]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        if value is not None:
            seen.setdefault(value, None)
    return list(seen)


class ConsolidatedContact(BaseModel):
    """
    Everything known about one person.

    Serialized with camelCase keys; the primary's own attributes come first,
    the rest follow in creation order.
    """

    model_config = ConfigDict(populate_by_name=True)

    primary_contact_id: int = Field(alias="primaryContactId")
    emails: list[str] = Field(default_factory=list)
    phone_numbers: list[str] = Field(default_factory=list, alias="phoneNumbers")
    secondary_contact_ids: list[int] = Field(default_factory=list, alias="secondaryContactIds")

    @classmethod
    def from_cluster(cls, primary: Contact, members: Sequence[Contact]) -> "ConsolidatedContact":
        ordered = [primary] + oldest_first(m for m in members if m.id != primary.id)
        return cls(
            primary_contact_id=primary.id,
            emails=_unique(contact.email for contact in ordered),
            phone_numbers=_unique(contact.phone_number for contact in ordered),
            secondary_contact_ids=[contact.id for contact in ordered[1:]],
        )
