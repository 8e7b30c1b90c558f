"""
Contact Identity Resolution Module

Reconciles email/phone submissions into identity clusters with exactly one
primary contact each.
"""

from .errors import ConflictRace, DataIntegrityError
from .gateway import ContactGateway, GatewayFactory, SQLContactGateway, SQLGatewayFactory
from .resolver import IdentityResolver, get_identity_resolver, introduces_new_fact
from .types import (
    ConsolidatedContact,
    Contact,
    ContactMatch,
    LinkPrecedence,
    MatchByEither,
    MatchByEmail,
    MatchByPhone,
    ResolutionOutcome,
)

__all__ = [
    "ConflictRace",
    "DataIntegrityError",
    "ContactGateway",
    "GatewayFactory",
    "SQLContactGateway",
    "SQLGatewayFactory",
    "IdentityResolver",
    "get_identity_resolver",
    "introduces_new_fact",
    "ConsolidatedContact",
    "Contact",
    "ContactMatch",
    "LinkPrecedence",
    "MatchByEither",
    "MatchByEmail",
    "MatchByPhone",
    "ResolutionOutcome",
]
