"""Unit tests for quote, revision and escrow price arithmetic."""

from __future__ import annotations

from decimal import Decimal

from marketplace_deals.domain.pricing import escrow_breakdown, quantize, quote_total, revised_amount


class TestQuoteTotal:
    def test_labor_plus_materials(self) -> None:
        assert quote_total(Decimal("1000"), Decimal("500")) == Decimal("1500.00")

    def test_urgent_surcharge_applies_to_base(self) -> None:
        assert quote_total(Decimal("1000"), Decimal("500"), Decimal("10")) == Decimal("1650.00")

    def test_missing_lines_count_as_zero(self) -> None:
        assert quote_total(Decimal("800"), None) == Decimal("800.00")

    def test_rounds_half_up(self) -> None:
        assert quantize(Decimal("10.005")) == Decimal("10.01")


class TestRevisedAmount:
    def test_suggested_price_plus_fees(self) -> None:
        assert revised_amount(Decimal("150000"), Decimal("5000")) == Decimal("155000")

    def test_suggested_price_alone(self) -> None:
        assert revised_amount(Decimal("90000"), None) == Decimal("90000")

    def test_no_suggested_price_keeps_the_quote_amount(self) -> None:
        assert revised_amount(None, None) is None
        assert revised_amount(None, Decimal("5000")) is None


class TestEscrowBreakdown:
    def test_standard_split(self) -> None:
        b = escrow_breakdown(
            Decimal("100000"),
            commission_percent=Decimal("10"),
            vat_rate=Decimal("0.18"),
            advance_percent=Decimal("50"),
        )
        assert b.commission_amount == Decimal("10000.00")
        assert b.vat_amount == Decimal("1800.00")
        assert b.provider_payout == Decimal("88200.00")
        assert b.advance_amount == Decimal("44100.00")
        assert b.remaining_amount == Decimal("44100.00")

    def test_no_advance_for_unverified_provider(self) -> None:
        b = escrow_breakdown(
            Decimal("90000"),
            commission_percent=Decimal("10"),
            vat_rate=Decimal("0.18"),
            advance_percent=Decimal("0"),
        )
        assert b.total_amount == Decimal("90000")
        assert b.advance_amount == Decimal("0.00")
        assert b.commission_amount + b.vat_amount + b.provider_payout == b.total_amount
