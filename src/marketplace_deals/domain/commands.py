"""Named commands the Transition Coordinator applies.

Every cross-entity consequence of a user action is spelled out here as a
plain value before anything is written: which quote is accepted, which
sibling quotes the acceptance supersedes, which amount the escrow must
follow. The coordinator builds a command from freshly read rows, applies
it with its own elevated rights, and records it in the audit log, so the
effect of an action never depends on who is allowed to write which table.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal

from marketplace_deals.domain.enums import RevisionResolution
from marketplace_deals.domain.exceptions import MarketplaceError
from marketplace_deals.domain.pricing import quantize, quote_total


def _ids(values: tuple[uuid.UUID, ...]) -> list[str]:
    return [str(v) for v in values]


@dataclass(frozen=True)
class QuoteTerms:
    """What a provider offers: a direct amount or the cost lines it is priced from."""

    amount: Decimal | None = None
    labor_cost: Decimal | None = None
    materials_cost: Decimal | None = None
    urgent_surcharge_percent: Decimal | None = None
    message: str | None = None
    estimated_duration: str | None = None
    validity_hours: int | None = None

    def price(self) -> Decimal:
        """The quote amount these terms produce.

        Raises:
            MarketplaceError: If no price was given or it is negative.
        """
        if self.amount is not None:
            total = quantize(self.amount)
        elif self.labor_cost is not None or self.materials_cost is not None:
            total = quote_total(self.labor_cost, self.materials_cost, self.urgent_surcharge_percent)
        else:
            raise MarketplaceError(
                "A quote needs either an amount or labor and materials costs.",
                code="INVALID_QUOTE_PRICE",
            )
        if total < 0:
            raise MarketplaceError("A quote amount cannot be negative.", code="INVALID_QUOTE_PRICE")
        return total


@dataclass(frozen=True)
class SubmitQuote:
    """A provider's new offer; older open offers from the same provider lapse."""

    project_id: uuid.UUID
    provider_id: uuid.UUID
    amount: Decimal
    superseded: tuple[uuid.UUID, ...] = ()

    def describe(self) -> dict:
        return {"amount": str(self.amount), "superseded": _ids(self.superseded)}


@dataclass(frozen=True)
class AcceptQuote:
    """Client acceptance: `primary` wins, every open sibling is rejected."""

    project_id: uuid.UUID
    primary: uuid.UUID
    amount: Decimal
    superseded: tuple[uuid.UUID, ...] = ()

    def describe(self) -> dict:
        return {
            "primary": str(self.primary),
            "amount": str(self.amount),
            "superseded": _ids(self.superseded),
        }


@dataclass(frozen=True)
class RejectQuote:
    project_id: uuid.UUID
    quote_id: uuid.UUID

    def describe(self) -> dict:
        return {"quote_id": str(self.quote_id)}


@dataclass(frozen=True)
class RequestRevision:
    project_id: uuid.UUID
    quote_id: uuid.UUID
    suggested_price: Decimal | None
    additional_fees: Decimal | None

    def describe(self) -> dict:
        return {
            "quote_id": str(self.quote_id),
            "suggested_price": str(self.suggested_price) if self.suggested_price is not None else None,
            "additional_fees": str(self.additional_fees) if self.additional_fees is not None else None,
        }


@dataclass(frozen=True)
class ResolveRevision:
    """Provider's answer to a revision.

    accept: `quote_id` becomes accepted, repriced to `new_amount` when set.
    reject: nothing but the revision changes.
    modify: `replacement_quote_id` becomes accepted and `quote_id` is
        demoted to viewed; the original keeps its price.
    In every accepting variant `superseded` lists the open siblings that
    cascade to rejected and `escrow_amount` is the figure escrow must follow.
    """

    project_id: uuid.UUID
    revision_id: uuid.UUID
    quote_id: uuid.UUID
    resolution: RevisionResolution
    new_amount: Decimal | None = None
    replacement_quote_id: uuid.UUID | None = None
    superseded: tuple[uuid.UUID, ...] = field(default=())
    escrow_amount: Decimal | None = None

    @property
    def accepted_quote_id(self) -> uuid.UUID | None:
        if self.resolution is RevisionResolution.ACCEPT:
            return self.quote_id
        if self.resolution is RevisionResolution.MODIFY:
            return self.replacement_quote_id
        return None

    def describe(self) -> dict:
        return {
            "resolution": self.resolution.value,
            "quote_id": str(self.quote_id),
            "new_amount": str(self.new_amount) if self.new_amount is not None else None,
            "replacement_quote_id": (
                str(self.replacement_quote_id) if self.replacement_quote_id else None
            ),
            "superseded": _ids(self.superseded),
            "escrow_amount": str(self.escrow_amount) if self.escrow_amount is not None else None,
        }


@dataclass(frozen=True)
class SynchronizeEscrow:
    """Make the project's escrow hold exactly `amount`."""

    project_id: uuid.UUID
    amount: Decimal
    provider_verified: bool = False

    def describe(self) -> dict:
        return {"amount": str(self.amount)}
