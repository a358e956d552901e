"""Project REST API routes.

Routes:
    POST   /api/v1/projects                              — Post a new project
    GET    /api/v1/projects/{id}                         — Get project details
    GET    /api/v1/projects/{id}/events                  — Get audit trail
    GET    /api/v1/projects/{id}/escrow                  — Get the held-funds record
    POST   /api/v1/projects/{id}/cancel                  — Client cancels
    POST   /api/v1/projects/{id}/expire                  — Sweep: expire
    POST   /api/v1/projects/{id}/abandon                 — Sweep: abandon
    POST   /api/v1/projects/{id}/payment                 — Client starts payment
    POST   /api/v1/projects/{id}/funds-held              — Processor confirmed capture
    POST   /api/v1/projects/{id}/completion-request      — Provider reports work done
    POST   /api/v1/projects/{id}/complete                — Client signs off
    POST   /api/v1/projects/{id}/dispute                 — Either party disputes
    POST   /api/v1/projects/{id}/escrow/resync           — Support re-synchronizes escrow
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends

from marketplace_deals.api.deps import get_actor, get_coordinator, get_lifecycle
from marketplace_deals.domain.actor import Actor
from marketplace_deals.logging_config import get_logger
from marketplace_deals.schemas.negotiation import TransitionResponse
from marketplace_deals.schemas.projects import (
    CreateProjectRequest,
    EscrowResponse,
    ProjectResponse,
    ReasonRequest,
    TransactionEventResponse,
)
from marketplace_deals.services.project_lifecycle import ProjectLifecycleService
from marketplace_deals.services.transition_coordinator import TransitionCoordinator

router = APIRouter(prefix="/api/v1/projects", tags=["Projects"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Create
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=ProjectResponse,
    status_code=201,
    summary="Post a new project",
)
async def create_project(
    request: CreateProjectRequest,
    actor: Actor = Depends(get_actor),
    svc: ProjectLifecycleService = Depends(get_lifecycle),
) -> ProjectResponse:
    """Create a project in OPEN state, owned by the calling client."""
    project = await svc.create_project(
        actor,
        title=request.title,
        description=request.description,
        category_id=request.category_id,
    )
    return ProjectResponse.model_validate(project)


# ---------------------------------------------------------------------------
# Closing paths
# ---------------------------------------------------------------------------


@router.post(
    "/{project_id}/cancel",
    response_model=TransitionResponse,
    summary="Cancel a project",
)
async def cancel_project(
    project_id: uuid.UUID,
    request: ReasonRequest | None = None,
    actor: Actor = Depends(get_actor),
    svc: ProjectLifecycleService = Depends(get_lifecycle),
) -> TransitionResponse:
    """Client cancels; quotes still pending or viewed expire."""
    result = await svc.cancel_project(actor, project_id, reason=request.reason if request else None)
    return TransitionResponse.from_result(result)


@router.post(
    "/{project_id}/expire",
    response_model=TransitionResponse,
    summary="Expire a stale project (scheduled sweep)",
)
async def expire_project(
    project_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    svc: ProjectLifecycleService = Depends(get_lifecycle),
) -> TransitionResponse:
    result = await svc.expire_project(actor, project_id)
    return TransitionResponse.from_result(result)


@router.post(
    "/{project_id}/abandon",
    response_model=TransitionResponse,
    summary="Abandon a stalled project (scheduled sweep)",
)
async def abandon_project(
    project_id: uuid.UUID,
    request: ReasonRequest | None = None,
    actor: Actor = Depends(get_actor),
    svc: ProjectLifecycleService = Depends(get_lifecycle),
) -> TransitionResponse:
    result = await svc.abandon_project(actor, project_id, reason=request.reason if request else None)
    return TransitionResponse.from_result(result)


# ---------------------------------------------------------------------------
# Payment + completion
# ---------------------------------------------------------------------------


@router.post(
    "/{project_id}/payment",
    response_model=TransitionResponse,
    summary="Start payment for the accepted quote",
)
async def start_payment(
    project_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    svc: ProjectLifecycleService = Depends(get_lifecycle),
) -> TransitionResponse:
    """QUOTE_ACCEPTED -> PAYMENT_PENDING, once the escrow matches the price."""
    result = await svc.start_payment(actor, project_id)
    return TransitionResponse.from_result(result)


@router.post(
    "/{project_id}/funds-held",
    response_model=TransitionResponse,
    summary="Record that the payment processor holds the funds",
)
async def record_funds_held(
    project_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    svc: ProjectLifecycleService = Depends(get_lifecycle),
) -> TransitionResponse:
    result = await svc.record_funds_held(actor, project_id)
    return TransitionResponse.from_result(result)


@router.post(
    "/{project_id}/completion-request",
    response_model=TransitionResponse,
    summary="Provider reports the work done",
)
async def request_completion(
    project_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    svc: ProjectLifecycleService = Depends(get_lifecycle),
) -> TransitionResponse:
    result = await svc.request_completion(actor, project_id)
    return TransitionResponse.from_result(result)


@router.post(
    "/{project_id}/complete",
    response_model=TransitionResponse,
    summary="Client confirms completion",
)
async def confirm_completion(
    project_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    svc: ProjectLifecycleService = Depends(get_lifecycle),
) -> TransitionResponse:
    """COMPLETION_REQUESTED -> COMPLETED; the escrow is released."""
    result = await svc.confirm_completion(actor, project_id)
    return TransitionResponse.from_result(result)


@router.post(
    "/{project_id}/dispute",
    response_model=TransitionResponse,
    summary="Raise a dispute",
)
async def raise_dispute(
    project_id: uuid.UUID,
    request: ReasonRequest | None = None,
    actor: Actor = Depends(get_actor),
    svc: ProjectLifecycleService = Depends(get_lifecycle),
) -> TransitionResponse:
    """Freeze the escrow. Valid while it is PENDING or HELD."""
    result = await svc.raise_dispute(actor, project_id, reason=request.reason if request else None)
    return TransitionResponse.from_result(result)


@router.post(
    "/{project_id}/escrow/resync",
    response_model=TransitionResponse,
    summary="Re-synchronize the escrow with the accepted quote",
)
async def resynchronize_escrow(
    project_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    coordinator: TransitionCoordinator = Depends(get_coordinator),
) -> TransitionResponse:
    """Support repair path after a partial synchronization failure."""
    result = await coordinator.resynchronize_escrow(actor, project_id)
    return TransitionResponse.from_result(result)


# ---------------------------------------------------------------------------
# Read endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/{project_id}",
    response_model=ProjectResponse,
    summary="Get project details",
)
async def get_project(
    project_id: uuid.UUID,
    svc: ProjectLifecycleService = Depends(get_lifecycle),
) -> ProjectResponse:
    project = await svc.get_project(project_id)
    return ProjectResponse.model_validate(project)


@router.get(
    "/{project_id}/escrow",
    response_model=EscrowResponse,
    summary="Get the project's escrow",
)
async def get_escrow(
    project_id: uuid.UUID,
    svc: ProjectLifecycleService = Depends(get_lifecycle),
) -> EscrowResponse:
    escrow = await svc.get_escrow(project_id)
    return EscrowResponse.model_validate(escrow)


@router.get(
    "/{project_id}/events",
    response_model=list[TransactionEventResponse],
    summary="Get audit trail",
)
async def get_events(
    project_id: uuid.UUID,
    svc: ProjectLifecycleService = Depends(get_lifecycle),
) -> list[TransactionEventResponse]:
    """Every transition applied to the project and its quotes, revisions and escrow."""
    events = await svc.get_events(project_id)
    return [TransactionEventResponse.model_validate(e) for e in events]
