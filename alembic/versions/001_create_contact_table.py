"""Create contact table.

Revision ID: 001_create_contact_table
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_create_contact_table"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    link_precedence = sa.Enum("primary", "secondary", name="link_precedence")

    op.create_table(
        "contact",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        # Identifying attributes
        sa.Column("email", sa.Text, nullable=True),
        sa.Column("phone_number", sa.Text, nullable=True),
        # Linking
        sa.Column(
            "linked_id",
            sa.Integer,
            sa.ForeignKey("contact.id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("link_precedence", link_precedence, nullable=False, server_default="primary"),
        # Timestamps
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "email IS NOT NULL OR phone_number IS NOT NULL",
            name="ck_contact_has_attribute",
        ),
        sa.CheckConstraint(
            "(link_precedence = 'primary' AND linked_id IS NULL) OR "
            "(link_precedence = 'secondary' AND linked_id IS NOT NULL)",
            name="ck_contact_link_precedence",
        ),
    )

    op.create_index("ix_contact_email", "contact", ["email"])
    op.create_index("ix_contact_phone_number", "contact", ["phone_number"])
    op.create_index("ix_contact_linked_id", "contact", ["linked_id"])
    op.execute(
        "CREATE UNIQUE INDEX uq_contact_identifying_pair "
        "ON contact (coalesce(email, ''), coalesce(phone_number, ''))"
    )


def downgrade() -> None:
    op.drop_index("uq_contact_identifying_pair", table_name="contact")
    op.drop_index("ix_contact_linked_id", table_name="contact")
    op.drop_index("ix_contact_phone_number", table_name="contact")
    op.drop_index("ix_contact_email", table_name="contact")
    op.drop_table("contact")
    sa.Enum(name="link_precedence").drop(op.get_bind(), checkfirst=True)
