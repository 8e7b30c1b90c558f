"""
Identify API Route

Accepts an email and/or phone number and returns the consolidated contact
they resolve to, linking or merging stored contacts as needed.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, field_validator

from src.identity import ConsolidatedContact, IdentityResolver, get_identity_resolver

logger = structlog.get_logger()

router = APIRouter()


# =============================================================================
# Request / Response Models
# =============================================================================


class IdentifyRequest(BaseModel):
    """Contact attributes submitted for resolution. At least one is required."""

    model_config = ConfigDict(populate_by_name=True)

    email: str | None = None
    phone_number: str | None = Field(default=None, alias="phoneNumber")

    @field_validator("email", "phone_number", mode="before")
    @classmethod
    def _normalize_attribute(cls, value: Any) -> Any:
        # Clients commonly send phone numbers as JSON numbers.
        if isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value


class IdentifyResponse(BaseModel):
    """Consolidated contact wrapped under `contact`."""

    contact: ConsolidatedContact


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/identify", response_model=IdentifyResponse)
async def identify(
    request: IdentifyRequest,
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> IdentifyResponse:
    """
    Resolve a contact from an email and/or phone number.

    Returns the primary contact id, every known email and phone number for
    the person, and the ids of all secondary contacts.
    """
    contact = await resolver.identify(email=request.email, phone_number=request.phone_number)
    return IdentifyResponse(contact=contact)
