"""Quote and revision REST API routes.

Routes:
    POST   /api/v1/projects/{id}/quotes        — Provider submits a quote
    GET    /api/v1/projects/{id}/quotes        — List a project's quotes
    POST   /api/v1/quotes/{id}/view            — Client read receipt
    POST   /api/v1/quotes/{id}/accept          — Client accepts (cascade + escrow)
    POST   /api/v1/quotes/{id}/reject          — Client declines
    POST   /api/v1/quotes/{id}/revisions       — Client requests a revision
    GET    /api/v1/quotes/{id}/revisions       — List a quote's revisions
    POST   /api/v1/revisions/{id}/accept       — Provider accepts the revision
    POST   /api/v1/revisions/{id}/reject       — Provider declines the revision
    POST   /api/v1/revisions/{id}/modify       — Provider counters with a new quote
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from marketplace_deals.api.deps import get_actor, get_coordinator
from marketplace_deals.domain.actor import Actor
from marketplace_deals.domain.enums import RevisionResolution
from marketplace_deals.domain.exceptions import DuplicateOperationError
from marketplace_deals.infrastructure.redis_client import (
    claim_idempotency,
    is_redis_ready,
    release_idempotency,
)
from marketplace_deals.logging_config import get_logger
from marketplace_deals.schemas.negotiation import (
    ModifyRevisionRequest,
    QuoteResponse,
    RequestRevisionRequest,
    ResolveRevisionRequest,
    RevisionResponse,
    SubmitQuoteRequest,
    TransitionResponse,
)
from marketplace_deals.services.transition_coordinator import TransitionCoordinator

router = APIRouter(prefix="/api/v1", tags=["Quotes"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Quotes
# ---------------------------------------------------------------------------


@router.post(
    "/projects/{project_id}/quotes",
    response_model=TransitionResponse,
    status_code=201,
    summary="Submit a quote",
)
async def submit_quote(
    project_id: uuid.UUID,
    request: SubmitQuoteRequest,
    actor: Actor = Depends(get_actor),
    coordinator: TransitionCoordinator = Depends(get_coordinator),
) -> TransitionResponse:
    """Provider sends an offer; their earlier open offer on the project lapses."""
    key = request.idempotency_key
    claimed = False
    if key:
        if is_redis_ready():
            if not await claim_idempotency(key):
                raise DuplicateOperationError(key)
            claimed = True
        else:
            logger.warning("idempotency.unavailable", key=key)

    try:
        result = await coordinator.submit_quote(
            actor,
            project_id,
            request.to_terms(),
            provider_verified=request.provider_verified,
        )
    except Exception:
        if claimed:
            await release_idempotency(key)
        raise
    return TransitionResponse.from_result(result)


@router.get(
    "/projects/{project_id}/quotes",
    response_model=list[QuoteResponse],
    summary="List quotes on a project",
)
async def list_quotes(
    project_id: uuid.UUID,
    coordinator: TransitionCoordinator = Depends(get_coordinator),
) -> list[QuoteResponse]:
    quotes = await coordinator.list_quotes(project_id)
    return [QuoteResponse.model_validate(q) for q in quotes]


@router.post(
    "/quotes/{quote_id}/view",
    response_model=TransitionResponse,
    summary="Mark a quote as viewed",
)
async def mark_quote_viewed(
    quote_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    coordinator: TransitionCoordinator = Depends(get_coordinator),
) -> TransitionResponse:
    result = await coordinator.mark_quote_viewed(actor, quote_id)
    return TransitionResponse.from_result(result)


@router.post(
    "/quotes/{quote_id}/accept",
    response_model=TransitionResponse,
    summary="Accept a quote",
)
async def accept_quote(
    quote_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    coordinator: TransitionCoordinator = Depends(get_coordinator),
) -> TransitionResponse:
    """Accept the quote and reject its competitors.

    If the escrow could not be updated afterwards the acceptance still
    stands and the response carries a `warning`.
    """
    result = await coordinator.accept_quote(actor, quote_id)
    return TransitionResponse.from_result(result)


@router.post(
    "/quotes/{quote_id}/reject",
    response_model=TransitionResponse,
    summary="Reject a quote",
)
async def reject_quote(
    quote_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    coordinator: TransitionCoordinator = Depends(get_coordinator),
) -> TransitionResponse:
    result = await coordinator.reject_quote(actor, quote_id)
    return TransitionResponse.from_result(result)


# ---------------------------------------------------------------------------
# Revisions
# ---------------------------------------------------------------------------


@router.post(
    "/quotes/{quote_id}/revisions",
    response_model=TransitionResponse,
    status_code=201,
    summary="Request a revision of a quote",
)
async def request_revision(
    quote_id: uuid.UUID,
    request: RequestRevisionRequest,
    actor: Actor = Depends(get_actor),
    coordinator: TransitionCoordinator = Depends(get_coordinator),
) -> TransitionResponse:
    result = await coordinator.request_revision(
        actor,
        quote_id,
        suggested_price=request.suggested_price,
        additional_fees=request.additional_fees,
        client_comments=request.client_comments,
    )
    return TransitionResponse.from_result(result)


@router.get(
    "/quotes/{quote_id}/revisions",
    response_model=list[RevisionResponse],
    summary="List revisions of a quote",
)
async def list_revisions(
    quote_id: uuid.UUID,
    coordinator: TransitionCoordinator = Depends(get_coordinator),
) -> list[RevisionResponse]:
    revisions = await coordinator.list_revisions(quote_id)
    return [RevisionResponse.model_validate(r) for r in revisions]


@router.post(
    "/revisions/{revision_id}/accept",
    response_model=TransitionResponse,
    summary="Accept a revision",
)
async def accept_revision(
    revision_id: uuid.UUID,
    request: ResolveRevisionRequest | None = None,
    actor: Actor = Depends(get_actor),
    coordinator: TransitionCoordinator = Depends(get_coordinator),
) -> TransitionResponse:
    result = await coordinator.resolve_revision(
        actor,
        revision_id,
        RevisionResolution.ACCEPT,
        provider_response=request.provider_response if request else None,
    )
    return TransitionResponse.from_result(result)


@router.post(
    "/revisions/{revision_id}/reject",
    response_model=TransitionResponse,
    summary="Reject a revision",
)
async def reject_revision(
    revision_id: uuid.UUID,
    request: ResolveRevisionRequest | None = None,
    actor: Actor = Depends(get_actor),
    coordinator: TransitionCoordinator = Depends(get_coordinator),
) -> TransitionResponse:
    result = await coordinator.resolve_revision(
        actor,
        revision_id,
        RevisionResolution.REJECT,
        provider_response=request.provider_response if request else None,
    )
    return TransitionResponse.from_result(result)


@router.post(
    "/revisions/{revision_id}/modify",
    response_model=TransitionResponse,
    summary="Answer a revision with a new quote",
)
async def modify_revision(
    revision_id: uuid.UUID,
    request: ModifyRevisionRequest,
    actor: Actor = Depends(get_actor),
    coordinator: TransitionCoordinator = Depends(get_coordinator),
) -> TransitionResponse:
    result = await coordinator.resolve_revision(
        actor,
        revision_id,
        RevisionResolution.MODIFY,
        provider_response=request.provider_response,
        terms=request.to_terms(),
    )
    return TransitionResponse.from_result(result)
