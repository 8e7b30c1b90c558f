"""
SQL gateway tests.

Runs the SQLAlchemy gateway and the resolver against an in-memory SQLite
database so the ORM model, constraints and error translation are exercised
without a Postgres server.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from src.db.models import Base, ContactRecord
from src.identity.errors import ConflictRace, DataIntegrityError
from src.identity.gateway import SQLGatewayFactory
from src.identity.resolver import IdentityResolver
from src.identity.types import LinkPrecedence, MatchByEither, MatchByEmail, MatchByPhone

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


@pytest.fixture
def gateway_factory(session_factory):
    @asynccontextmanager
    async def session_scope():
        session = session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    return SQLGatewayFactory(session_scope)


async def _count_rows(session_factory) -> int:
    async with session_factory() as session:
        result = await session.scalars(select(ContactRecord))
        return len(result.all())


class TestSQLContactGateway:
    async def test_create_assigns_id_and_timestamps(self, gateway_factory):
        async with gateway_factory() as gateway:
            contact = await gateway.create(
                email="a@x.com",
                phone_number=None,
                link_precedence=LinkPrecedence.PRIMARY,
            )

        assert contact.id == 1
        assert contact.link_precedence == LinkPrecedence.PRIMARY
        assert contact.created_at is not None
        assert contact.updated_at is not None

    async def test_find_matches_by_predicate(self, gateway_factory):
        async with gateway_factory() as gateway:
            first = await gateway.create(email="a@x.com", phone_number="1", link_precedence=LinkPrecedence.PRIMARY)
            second = await gateway.create(email="b@x.com", phone_number="2", link_precedence=LinkPrecedence.PRIMARY)
            await gateway.create(email="c@x.com", phone_number="3", link_precedence=LinkPrecedence.PRIMARY)

        async with gateway_factory() as gateway:
            by_email = await gateway.find_matches(MatchByEmail(email="a@x.com"))
            by_phone = await gateway.find_matches(MatchByPhone(phone_number="2"))
            by_either = await gateway.find_matches(MatchByEither(email="a@x.com", phone_number="2"))

        assert [c.id for c in by_email] == [first.id]
        assert [c.id for c in by_phone] == [second.id]
        assert [c.id for c in by_either] == [first.id, second.id]

    async def test_find_cluster_returns_primary_and_secondaries(self, gateway_factory):
        async with gateway_factory() as gateway:
            primary = await gateway.create(email="a@x.com", phone_number=None, link_precedence=LinkPrecedence.PRIMARY)
            child = await gateway.create(
                email="a@x.com",
                phone_number="1",
                link_precedence=LinkPrecedence.SECONDARY,
                linked_id=primary.id,
            )
            await gateway.create(email="z@x.com", phone_number=None, link_precedence=LinkPrecedence.PRIMARY)

            cluster = await gateway.find_cluster(primary.id)

        assert [c.id for c in cluster] == [primary.id, child.id]

    async def test_demote_and_relink(self, gateway_factory):
        async with gateway_factory() as gateway:
            older = await gateway.create(email="a@x.com", phone_number=None, link_precedence=LinkPrecedence.PRIMARY)
            newer = await gateway.create(email="b@x.com", phone_number=None, link_precedence=LinkPrecedence.PRIMARY)
            child = await gateway.create(
                email="b@x.com",
                phone_number="2",
                link_precedence=LinkPrecedence.SECONDARY,
                linked_id=newer.id,
            )

        async with gateway_factory() as gateway:
            await gateway.demote(newer.id, older.id)
            await gateway.demote(newer.id, older.id)
            moved = await gateway.relink_secondaries(newer.id, older.id)
            cluster = await gateway.find_cluster(older.id)

        assert moved == 1
        by_id = {c.id: c for c in cluster}
        assert set(by_id) == {older.id, newer.id, child.id}
        assert by_id[newer.id].link_precedence == LinkPrecedence.SECONDARY
        assert by_id[newer.id].linked_id == older.id
        assert by_id[child.id].linked_id == older.id

    async def test_duplicate_pair_raises_conflict_and_rolls_back(self, gateway_factory, session_factory):
        async with gateway_factory() as gateway:
            await gateway.create(email="a@x.com", phone_number="1", link_precedence=LinkPrecedence.PRIMARY)

        with pytest.raises(ConflictRace):
            async with gateway_factory() as gateway:
                await gateway.create(email="b@x.com", phone_number=None, link_precedence=LinkPrecedence.PRIMARY)
                await gateway.create(email="a@x.com", phone_number="1", link_precedence=LinkPrecedence.PRIMARY)

        assert await _count_rows(session_factory) == 1

    async def test_absent_values_compare_equal_in_pair_guard(self, gateway_factory):
        async with gateway_factory() as gateway:
            await gateway.create(email="a@x.com", phone_number=None, link_precedence=LinkPrecedence.PRIMARY)

        with pytest.raises(ConflictRace):
            async with gateway_factory() as gateway:
                await gateway.create(email="a@x.com", phone_number=None, link_precedence=LinkPrecedence.PRIMARY)

    async def test_check_constraint_violation_is_integrity_error(self, gateway_factory):
        with pytest.raises(DataIntegrityError):
            async with gateway_factory() as gateway:
                await gateway.create(
                    email="a@x.com",
                    phone_number=None,
                    link_precedence=LinkPrecedence.SECONDARY,
                )


class TestResolverOverSQL:
    async def test_reference_scenarios(self, gateway_factory, session_factory):
        resolver = IdentityResolver(gateway_factory)

        first = await resolver.identify(email="a@x.com")
        assert first.model_dump(by_alias=True) == {
            "primaryContactId": 1,
            "emails": ["a@x.com"],
            "phoneNumbers": [],
            "secondaryContactIds": [],
        }

        second = await resolver.identify(email="a@x.com", phone_number="123")
        assert second.model_dump(by_alias=True) == {
            "primaryContactId": 1,
            "emails": ["a@x.com"],
            "phoneNumbers": ["123"],
            "secondaryContactIds": [2],
        }

        await resolver.identify(email="b@x.com", phone_number="456")
        merged = await resolver.identify(email="a@x.com", phone_number="456")

        assert merged.primary_contact_id == 1
        assert 3 in merged.secondary_contact_ids
        assert merged.emails == ["a@x.com", "b@x.com"]
        assert merged.phone_numbers == ["123", "456"]

        again = await resolver.identify(email="a@x.com", phone_number="456")
        assert again == merged
        assert await _count_rows(session_factory) == 4
