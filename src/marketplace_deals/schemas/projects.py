"""Pydantic schemas for projects, escrows and the audit trail.

Request/response shapes for the REST API. They are separate from the ORM
models to keep the API and database layers apart.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateProjectRequest(BaseModel):
    """Request body for posting a new project."""

    title: str = Field(
        ...,
        min_length=3,
        max_length=200,
        description="Short title of the job",
        examples=["Repaint two bedrooms"],
    )
    description: str | None = Field(
        default=None,
        max_length=5000,
        description="What needs to be done",
    )
    category_id: int | None = Field(
        default=None,
        ge=1,
        description="Service category the job belongs to",
    )


class ReasonRequest(BaseModel):
    """Optional free-text reason for cancellations, sweeps and disputes."""

    reason: str | None = Field(default=None, max_length=2000)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class ProjectResponse(BaseModel):
    """Response schema for a project."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    client_id: uuid.UUID
    category_id: int | None
    title: str
    description: str | None
    status: str
    created_at: datetime
    updated_at: datetime


class EscrowResponse(BaseModel):
    """Response schema for a project's held-funds record."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    project_id: uuid.UUID
    total_amount: Decimal
    commission_percent: Decimal
    commission_amount: Decimal
    vat_amount: Decimal
    provider_payout: Decimal
    advance_percent: Decimal
    advance_amount: Decimal
    status: str
    created_at: datetime
    updated_at: datetime


class TransactionEventResponse(BaseModel):
    """Response schema for an audit event."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    project_id: uuid.UUID
    entity_type: str
    entity_id: uuid.UUID
    event_type: str
    old_status: str | None
    new_status: str
    actor: str
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime


class HealthResponse(BaseModel):
    """Health check response; `notifications` names the active emitter backend."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
    notifications: str = "log"
