"""
Contact Database Models

SQLAlchemy model for identity-reconciled contact records.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Text,
    func,
)
from sqlalchemy.orm import declarative_base

from src.kernel.time import utc_now

Base = declarative_base()

LINK_PRECEDENCE_VALUES = ("primary", "secondary")


class ContactRecord(Base):
    """
    A single identifying record (email and/or phone number).

    Rows in one identity cluster share a single `primary` row; every other
    row is `secondary` and points at it through `linked_id`.
    """

    __tablename__ = "contact"

    # Identity
    id = Column(Integer, primary_key=True, autoincrement=True)

    # Identifying attributes (at least one is set)
    email = Column(Text, nullable=True, index=True)
    phone_number = Column(Text, nullable=True, index=True)

    # Linking
    linked_id = Column(
        Integer,
        ForeignKey("contact.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    link_precedence = Column(
        Enum(*LINK_PRECEDENCE_VALUES, name="link_precedence"),
        nullable=False,
        default="primary",
    )

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "email IS NOT NULL OR phone_number IS NOT NULL",
            name="ck_contact_has_attribute",
        ),
        CheckConstraint(
            "(link_precedence = 'primary' AND linked_id IS NULL) OR "
            "(link_precedence = 'secondary' AND linked_id IS NOT NULL)",
            name="ck_contact_link_precedence",
        ),
        # A lost concurrent insert of the same pair fails here instead of
        # producing a second primary.
        Index(
            "uq_contact_identifying_pair",
            func.coalesce(email, ""),
            func.coalesce(phone_number, ""),
            unique=True,
        ),
    )

    def __repr__(self) -> str:
        return f"<ContactRecord {self.id} {self.link_precedence} linked_id={self.linked_id}>"
