"""Pydantic API schemas."""

from marketplace_deals.schemas.negotiation import (
    ModifyRevisionRequest,
    QuoteResponse,
    QuoteTermsRequest,
    RequestRevisionRequest,
    ResolveRevisionRequest,
    RevisionResponse,
    SubmitQuoteRequest,
    TransitionResponse,
    WarningResponse,
)
from marketplace_deals.schemas.projects import (
    CreateProjectRequest,
    EscrowResponse,
    HealthResponse,
    ProjectResponse,
    ReasonRequest,
    TransactionEventResponse,
)

__all__ = [
    "CreateProjectRequest",
    "EscrowResponse",
    "HealthResponse",
    "ModifyRevisionRequest",
    "ProjectResponse",
    "QuoteResponse",
    "QuoteTermsRequest",
    "ReasonRequest",
    "RequestRevisionRequest",
    "ResolveRevisionRequest",
    "RevisionResponse",
    "SubmitQuoteRequest",
    "TransactionEventResponse",
    "TransitionResponse",
    "WarningResponse",
]
