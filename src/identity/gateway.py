"""
Contact Storage Gateway

The narrow storage contract the identity resolver consumes, plus its
SQLAlchemy implementation. A gateway is always used inside one transaction
opened by a gateway factory; the factory commits on a clean exit, rolls back
otherwise, and translates driver failures into service errors.
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import AsyncIterator, Callable, Protocol

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import get_settings
from src.db.client import get_db_session
from src.db.models.contacts import ContactRecord
from src.kernel.errors import ServiceError, StorageError
from src.kernel.time import utc_now
from .errors import ConflictRace, DataIntegrityError
from .types import (
    Contact,
    ContactMatch,
    LinkPrecedence,
    MatchByEither,
    MatchByEmail,
    MatchByPhone,
)

logger = structlog.get_logger()

# unique_violation, serialization_failure, deadlock_detected
_CONFLICT_SQLSTATES = frozenset({"23505", "40001", "40P01"})


class ContactGateway(Protocol):
    """Storage operations available to one resolution."""

    async def find_matches(self, match: ContactMatch) -> list[Contact]:
        ...

    async def find_cluster(self, primary_id: int) -> list[Contact]:
        ...

    async def create(
        self,
        *,
        email: str | None,
        phone_number: str | None,
        link_precedence: LinkPrecedence,
        linked_id: int | None = None,
    ) -> Contact:
        ...

    async def demote(self, contact_id: int, new_linked_id: int) -> None:
        ...

    async def relink_secondaries(self, old_primary_id: int, new_primary_id: int) -> int:
        ...


GatewayFactory = Callable[[], AbstractAsyncContextManager[ContactGateway]]


def match_clause(match: ContactMatch):
    """Translate a contact match into a SQL predicate."""
    if isinstance(match, MatchByEither):
        return or_(
            ContactRecord.email == match.email,
            ContactRecord.phone_number == match.phone_number,
        )
    if isinstance(match, MatchByEmail):
        return ContactRecord.email == match.email
    if isinstance(match, MatchByPhone):
        return ContactRecord.phone_number == match.phone_number
    raise TypeError(f"Unsupported contact match: {match!r}")


class SQLContactGateway:
    """ContactGateway bound to one SQLAlchemy session (one transaction)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _select(self, *criteria) -> list[Contact]:
        stmt = (
            select(ContactRecord)
            .where(*criteria)
            .order_by(ContactRecord.created_at.asc(), ContactRecord.id.asc())
            .execution_options(populate_existing=True)
        )
        result = await self.session.scalars(stmt)
        return [Contact.model_validate(row) for row in result.all()]

    async def find_matches(self, match: ContactMatch) -> list[Contact]:
        return await self._select(match_clause(match))

    async def find_cluster(self, primary_id: int) -> list[Contact]:
        return await self._select(
            or_(ContactRecord.id == primary_id, ContactRecord.linked_id == primary_id)
        )

    async def create(
        self,
        *,
        email: str | None,
        phone_number: str | None,
        link_precedence: LinkPrecedence,
        linked_id: int | None = None,
    ) -> Contact:
        now = utc_now()
        record = ContactRecord(
            email=email,
            phone_number=phone_number,
            link_precedence=LinkPrecedence(link_precedence).value,
            linked_id=linked_id,
            created_at=now,
            updated_at=now,
        )
        self.session.add(record)
        await self.session.flush()
        return Contact.model_validate(record)

    async def demote(self, contact_id: int, new_linked_id: int) -> None:
        await self.session.execute(
            update(ContactRecord)
            .where(ContactRecord.id == contact_id)
            .values(
                link_precedence=LinkPrecedence.SECONDARY.value,
                linked_id=new_linked_id,
                updated_at=utc_now(),
            )
        )

    async def relink_secondaries(self, old_primary_id: int, new_primary_id: int) -> int:
        result = await self.session.execute(
            update(ContactRecord)
            .where(ContactRecord.linked_id == old_primary_id)
            .values(linked_id=new_primary_id, updated_at=utc_now())
        )
        return int(result.rowcount or 0)


# =============================================================================
# Transaction scope
# =============================================================================


def _sqlstate(exc: DBAPIError) -> str | None:
    for candidate in (exc.orig, getattr(exc.orig, "__cause__", None)):
        for attr in ("sqlstate", "pgcode"):
            value = getattr(candidate, attr, None)
            if value:
                return str(value)
    return None


def _is_conflict(exc: DBAPIError) -> bool:
    state = _sqlstate(exc)
    if state is not None:
        return state in _CONFLICT_SQLSTATES
    # Drivers without SQLSTATE (SQLite) only report the constraint kind.
    return isinstance(exc, IntegrityError) and "unique" in str(exc.orig).lower()


def translate_storage_error(exc: Exception) -> ServiceError:
    """Map a driver/SQLAlchemy failure onto the service error it represents."""
    if isinstance(exc, DBAPIError) and _is_conflict(exc):
        state = _sqlstate(exc)
        return ConflictRace(meta={"sqlstate": state} if state else None)
    if isinstance(exc, IntegrityError):
        return DataIntegrityError(message="Contact write violated a storage constraint")
    return StorageError()


def _default_session_scope() -> AbstractAsyncContextManager[AsyncSession]:
    return get_db_session(isolation_level=get_settings().db_isolation_level)


class SQLGatewayFactory:
    """
    Opens one transaction per call and yields a SQLContactGateway bound to it.

    Usage:
        factory = SQLGatewayFactory()
        async with factory() as gateway:
            matches = await gateway.find_matches(match)
    """

    def __init__(
        self,
        session_scope: Callable[[], AbstractAsyncContextManager[AsyncSession]] | None = None,
    ):
        self._session_scope = session_scope or _default_session_scope

    @asynccontextmanager
    async def __call__(self) -> AsyncIterator[SQLContactGateway]:
        try:
            async with self._session_scope() as session:
                yield SQLContactGateway(session)
        except (SQLAlchemyError, OSError) as exc:
            translated = translate_storage_error(exc)
            if isinstance(translated, ConflictRace):
                logger.info("Contact transaction conflicted", **translated.meta)
            else:
                logger.error("Contact transaction failed", error=str(exc), code=translated.code)
            raise translated from exc
