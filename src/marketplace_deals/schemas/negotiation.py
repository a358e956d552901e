"""Pydantic schemas for quotes, revisions and transition results."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field, model_validator

from marketplace_deals.domain.commands import QuoteTerms
from marketplace_deals.schemas.projects import EscrowResponse, ProjectResponse

if TYPE_CHECKING:
    from marketplace_deals.services.base import TransitionResult

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class QuoteTermsRequest(BaseModel):
    """Price and terms of an offer, shared by new quotes and counter-offers."""

    amount: Decimal | None = Field(
        default=None,
        ge=0,
        decimal_places=2,
        description="Total price. Leave empty to price from labor and materials.",
        examples=[100000],
    )
    labor_cost: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    materials_cost: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    urgent_surcharge_percent: Decimal | None = Field(
        default=None,
        ge=0,
        le=100,
        description="Surcharge on labor + materials for urgent jobs, in percent",
    )
    message: str | None = Field(default=None, max_length=5000)
    estimated_duration: str | None = Field(default=None, max_length=100, examples=["3 days"])
    validity_hours: int | None = Field(
        default=None,
        ge=1,
        le=24 * 30,
        description="How long the offer stands",
    )

    @model_validator(mode="after")
    def _priced(self) -> QuoteTermsRequest:
        if self.amount is None and self.labor_cost is None and self.materials_cost is None:
            raise ValueError("either amount or labor_cost/materials_cost is required")
        return self

    def to_terms(self) -> QuoteTerms:
        return QuoteTerms(
            amount=self.amount,
            labor_cost=self.labor_cost,
            materials_cost=self.materials_cost,
            urgent_surcharge_percent=self.urgent_surcharge_percent,
            message=self.message,
            estimated_duration=self.estimated_duration,
            validity_hours=self.validity_hours,
        )


class SubmitQuoteRequest(QuoteTermsRequest):
    """Request body for a provider's quote."""

    provider_verified: bool = Field(
        default=False,
        description="Whether the provider's identity is verified (from the profile service)",
    )
    idempotency_key: str | None = Field(
        default=None,
        max_length=200,
        description="Optional idempotency key to prevent duplicate submissions",
    )


class RequestRevisionRequest(BaseModel):
    """Request body for a client's revision request."""

    suggested_price: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    additional_fees: Decimal | None = Field(
        default=None,
        ge=0,
        decimal_places=2,
        description="Added on top of suggested_price when the revision is accepted",
    )
    client_comments: str | None = Field(default=None, max_length=5000)


class ResolveRevisionRequest(BaseModel):
    """Request body for accepting or rejecting a revision."""

    provider_response: str | None = Field(default=None, max_length=5000)


class ModifyRevisionRequest(QuoteTermsRequest):
    """Request body for answering a revision with a new quote."""

    provider_response: str | None = Field(default=None, max_length=5000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class QuoteResponse(BaseModel):
    """Response schema for a quote."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    project_id: uuid.UUID
    provider_id: uuid.UUID
    amount: Decimal
    labor_cost: Decimal | None
    materials_cost: Decimal | None
    urgent_surcharge_percent: Decimal
    message: str | None
    estimated_duration: str | None
    provider_verified: bool
    expires_at: datetime | None
    status: str
    created_at: datetime
    updated_at: datetime


class RevisionResponse(BaseModel):
    """Response schema for a revision."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    quote_id: uuid.UUID
    project_id: uuid.UUID
    requested_by: uuid.UUID
    suggested_price: Decimal | None
    additional_fees: Decimal | None
    client_comments: str | None
    provider_response: str | None
    status: str
    modified_quote_id: uuid.UUID | None
    responded_at: datetime | None
    created_at: datetime


class WarningResponse(BaseModel):
    """Non-blocking problem with an action that nevertheless took effect."""

    error: str
    message: str
    step: str


class TransitionResponse(BaseModel):
    """Everything an action changed, plus a warning if a follow-up step failed."""

    model_config = ConfigDict(from_attributes=True)

    project: ProjectResponse
    quote: QuoteResponse | None = None
    revision: RevisionResponse | None = None
    escrow: EscrowResponse | None = None
    related_quotes: list[QuoteResponse] = Field(default_factory=list)
    warning: WarningResponse | None = None

    @classmethod
    def from_result(cls, result: TransitionResult) -> TransitionResponse:
        return cls(
            project=ProjectResponse.model_validate(result.project),
            quote=QuoteResponse.model_validate(result.quote) if result.quote else None,
            revision=RevisionResponse.model_validate(result.revision) if result.revision else None,
            escrow=EscrowResponse.model_validate(result.escrow) if result.escrow else None,
            related_quotes=[QuoteResponse.model_validate(q) for q in result.related_quotes],
            warning=WarningResponse(**result.warning.to_dict()) if result.warning else None,
        )
