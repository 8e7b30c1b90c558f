"""
Identity Resolver

Reconciles a submitted email and/or phone number against stored contacts.

One resolution:
1. Finds every contact sharing the email or the phone number.
2. Creates a new primary when nothing matches.
3. Otherwise resolves each match to its cluster's primary. More than one
   primary means the submission bridged separate clusters: the oldest
   primary survives, the others are demoted and their secondaries re-homed.
4. Records the submission as a new secondary when it carries a fact the
   cluster does not hold yet (an unseen value, or an unseen email/phone
   pairing).
5. Returns the consolidated view of the cluster.

All steps run inside one gateway transaction. A conflict with a concurrent
resolution rolls the transaction back and the resolution is replayed.
"""

from __future__ import annotations

from collections.abc import Sequence

import structlog
from prometheus_client import Counter

from src.config import get_settings
from src.kernel.errors import StorageError
from .errors import ConflictRace, DataIntegrityError
from .gateway import ContactGateway, GatewayFactory, SQLGatewayFactory
from .types import (
    ConsolidatedContact,
    Contact,
    ContactMatch,
    LinkPrecedence,
    ResolutionOutcome,
    oldest_first,
)

logger = structlog.get_logger()

IDENTITY_RESOLUTIONS = Counter(
    "identity_resolutions_total",
    "Identity resolutions by storage outcome",
    ["outcome"],
)
IDENTITY_CONFLICT_RETRIES = Counter(
    "identity_conflict_retries_total",
    "Identity resolutions replayed after a concurrent write conflict",
)


def introduces_new_fact(match: ContactMatch, cluster: Sequence[Contact]) -> bool:
    """
    True when the submission holds something the cluster does not record.

    Either attribute being unseen counts, and so does a known email and a
    known phone number that never appeared together on one row.
    """
    if match.email is not None and all(c.email != match.email for c in cluster):
        return True
    if match.phone_number is not None and all(c.phone_number != match.phone_number for c in cluster):
        return True
    if match.email is not None and match.phone_number is not None:
        return all((c.email, c.phone_number) != match.pair for c in cluster)
    return False


class IdentityResolver:
    """
    Stateless identity reconciliation over a transactional contact store.

    Safe to share across concurrent requests: all consistency is enforced by
    the storage transaction the gateway factory opens.
    """

    def __init__(self, gateway_factory: GatewayFactory, conflict_retries: int = 1):
        self.gateway_factory = gateway_factory
        self.conflict_retries = max(0, int(conflict_retries))

    async def identify(
        self,
        email: str | None = None,
        phone_number: str | None = None,
    ) -> ConsolidatedContact:
        """
        Resolve the submitted attributes to one consolidated contact.

        Raises:
            ValidationError: neither attribute was supplied (no storage access).
            StorageError: storage failed, or conflicts outlasted the retries.
            DataIntegrityError: stored links break the cluster invariants.
        """
        match = ContactMatch.from_attributes(email, phone_number)

        attempt = 0
        while True:
            try:
                async with self.gateway_factory() as gateway:
                    consolidated, outcome = await self._resolve(gateway, match)
            except ConflictRace as exc:
                if attempt >= self.conflict_retries:
                    logger.warning(
                        "Identity resolution conflict persisted",
                        attempts=attempt + 1,
                    )
                    raise StorageError(
                        message="Concurrent updates prevented identity resolution",
                        code="storage.conflict_retries_exhausted",
                    ) from exc
                attempt += 1
                IDENTITY_CONFLICT_RETRIES.inc()
                logger.info("Retrying identity resolution after conflict", attempt=attempt)
                continue

            IDENTITY_RESOLUTIONS.labels(outcome=outcome.value).inc()
            logger.info(
                "Identity resolved",
                outcome=outcome.value,
                primary_contact_id=consolidated.primary_contact_id,
                secondary_count=len(consolidated.secondary_contact_ids),
            )
            return consolidated

    # ---------------------------------------------------------------------
    # Resolution steps
    # ---------------------------------------------------------------------

    async def _resolve(
        self,
        gateway: ContactGateway,
        match: ContactMatch,
    ) -> tuple[ConsolidatedContact, ResolutionOutcome]:
        matches = await gateway.find_matches(match)

        if not matches:
            contact = await gateway.create(
                email=match.email,
                phone_number=match.phone_number,
                link_precedence=LinkPrecedence.PRIMARY,
            )
            logger.debug("Created primary contact", contact_id=contact.id)
            return ConsolidatedContact.from_cluster(contact, [contact]), ResolutionOutcome.CREATED_PRIMARY

        primaries = await self._cluster_primaries(gateway, matches)
        primary = primaries[0]
        merged = len(primaries) > 1
        if merged:
            await self._merge(gateway, primary, primaries[1:])

        cluster = await self._load_cluster(gateway, primary.id)

        created = introduces_new_fact(match, cluster)
        if created:
            contact = await gateway.create(
                email=match.email,
                phone_number=match.phone_number,
                link_precedence=LinkPrecedence.SECONDARY,
                linked_id=primary.id,
            )
            logger.debug(
                "Created secondary contact",
                contact_id=contact.id,
                primary_contact_id=primary.id,
            )
            cluster = await self._load_cluster(gateway, primary.id)

        if merged:
            outcome = ResolutionOutcome.MERGED_AND_CREATED if created else ResolutionOutcome.MERGED
        else:
            outcome = ResolutionOutcome.CREATED_SECONDARY if created else ResolutionOutcome.UNCHANGED

        return ConsolidatedContact.from_cluster(primary, cluster), outcome

    async def _cluster_primaries(
        self,
        gateway: ContactGateway,
        matches: Sequence[Contact],
    ) -> list[Contact]:
        """Primaries of every cluster touched by the matches, oldest first."""
        primaries: dict[int, Contact] = {}
        referenced: set[int] = set()

        for contact in matches:
            if contact.is_primary:
                if contact.linked_id is not None:
                    raise DataIntegrityError(
                        message="Primary contact carries a link",
                        meta={"contact_id": contact.id, "linked_id": contact.linked_id},
                    )
                primaries[contact.id] = contact
            elif contact.linked_id is None:
                raise DataIntegrityError(
                    message="Secondary contact has no primary",
                    meta={"contact_id": contact.id},
                )
            else:
                referenced.add(contact.linked_id)

        for primary_id in sorted(referenced - primaries.keys()):
            primaries[primary_id] = await self._load_primary(gateway, primary_id)

        return oldest_first(primaries.values())

    async def _load_primary(self, gateway: ContactGateway, primary_id: int) -> Contact:
        cluster = await self._load_cluster(gateway, primary_id)
        return next(contact for contact in cluster if contact.id == primary_id)

    async def _load_cluster(self, gateway: ContactGateway, primary_id: int) -> list[Contact]:
        """Fetch a cluster and check that it hangs off a single primary."""
        cluster = await gateway.find_cluster(primary_id)

        head = next((contact for contact in cluster if contact.id == primary_id), None)
        if head is None:
            raise DataIntegrityError(
                message="Linked contact does not exist",
                meta={"contact_id": primary_id},
            )
        if not head.is_primary:
            raise DataIntegrityError(
                message="Contact is linked to a secondary contact",
                meta={"contact_id": primary_id, "linked_id": head.linked_id},
            )
        for contact in cluster:
            if contact.id != primary_id and contact.is_primary:
                raise DataIntegrityError(
                    message="Primary contact carries a link",
                    meta={"contact_id": contact.id, "linked_id": contact.linked_id},
                )
        return cluster

    async def _merge(
        self,
        gateway: ContactGateway,
        survivor: Contact,
        demoted: Sequence[Contact],
    ) -> None:
        for contact in demoted:
            await gateway.demote(contact.id, survivor.id)
            moved = await gateway.relink_secondaries(contact.id, survivor.id)
            logger.info(
                "Merged identity clusters",
                primary_contact_id=survivor.id,
                demoted_contact_id=contact.id,
                relinked_secondaries=moved,
            )


# Global instance
_identity_resolver: IdentityResolver | None = None


def get_identity_resolver() -> IdentityResolver:
    """Get or create the global identity resolver backed by the SQL store."""
    global _identity_resolver

    if _identity_resolver is None:
        _identity_resolver = IdentityResolver(
            SQLGatewayFactory(),
            conflict_retries=get_settings().identity_conflict_retries,
        )

    return _identity_resolver
