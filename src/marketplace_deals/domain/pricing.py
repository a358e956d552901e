"""Price arithmetic for quotes, revisions and the escrow fee breakdown.

All amounts are Decimal and rounded to the currency's two decimal places
with ROUND_HALF_UP.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def quantize(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def quote_total(
    labor_cost: Decimal | None,
    materials_cost: Decimal | None,
    urgent_surcharge_percent: Decimal | None = None,
) -> Decimal:
    """Price a quote from its cost lines: base plus the urgent surcharge on that base."""
    base = (labor_cost or ZERO) + (materials_cost or ZERO)
    surcharge = base * (urgent_surcharge_percent or ZERO) / HUNDRED
    return quantize(base + surcharge)


def revised_amount(
    suggested_price: Decimal | None,
    additional_fees: Decimal | None,
) -> Decimal | None:
    """Amount a quote takes when a revision is accepted.

    None means the revision carried no price, so the quote keeps its amount.
    Fees only count on top of a suggested price.
    """
    if suggested_price is None:
        return None
    return quantize(suggested_price + (additional_fees or ZERO))


@dataclass(frozen=True)
class EscrowBreakdown:
    """How a held total splits between platform and provider."""

    total_amount: Decimal
    commission_percent: Decimal
    commission_amount: Decimal
    vat_amount: Decimal
    provider_payout: Decimal
    advance_percent: Decimal
    advance_amount: Decimal

    @property
    def remaining_amount(self) -> Decimal:
        return self.provider_payout - self.advance_amount


def escrow_breakdown(
    total_amount: Decimal,
    commission_percent: Decimal,
    vat_rate: Decimal,
    advance_percent: Decimal,
) -> EscrowBreakdown:
    """Split a total into commission, VAT on the commission, payout and advance.

    Args:
        total_amount: The accepted quote's amount.
        commission_percent: Platform commission, in percent of the total.
        vat_rate: VAT applied to the commission (fraction, e.g. 0.18).
        advance_percent: Share of the payout released up-front, in percent.
    """
    commission = quantize(total_amount * commission_percent / HUNDRED)
    vat = quantize(commission * vat_rate)
    payout = total_amount - commission - vat
    advance = quantize(payout * advance_percent / HUNDRED)
    return EscrowBreakdown(
        total_amount=total_amount,
        commission_percent=commission_percent,
        commission_amount=commission,
        vat_amount=vat,
        provider_payout=payout,
        advance_percent=advance_percent,
        advance_amount=advance,
    )
