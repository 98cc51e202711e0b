"""Tests for flat-rate revenue and discount arithmetic."""

from rentalcore.booking.revenue import RevenueLine, apply_discount, calculate


class TestRevenueLine:
    def test_custom_price_wins(self):
        assert RevenueLine("D1", 50.0, 100.0).amount == 50.0

    def test_zero_custom_price_falls_back_to_flat_rate(self):
        assert RevenueLine("D1", 0.0, 100.0).amount == 100.0

    def test_no_price_at_all(self):
        assert RevenueLine("D1", None, None).amount == 0.0


class TestApplyDiscount:
    def test_percent(self):
        assert apply_discount(150.0, 10, "percent") == 135.0

    def test_amount(self):
        assert apply_discount(150.0, 20, "amount") == 130.0

    def test_never_negative(self):
        assert apply_discount(50.0, 80, "amount") == 0.0
        assert apply_discount(50.0, 150, "percent") == 0.0

    def test_rounded_to_cents(self):
        assert apply_discount(33.33, 10, "percent") == 30.0


class TestCalculate:
    def test_empty_job(self):
        breakdown = calculate([], 10, "percent")
        assert breakdown.revenue == 0.0
        assert breakdown.final_revenue == 0.0

    def test_flat_rates_and_custom_prices(self):
        lines = [RevenueLine("D1", None, 100.0), RevenueLine("D2", 50.0, 80.0)]
        breakdown = calculate(lines, 10, "percent")
        assert breakdown.revenue == 150.0
        assert breakdown.final_revenue == 135.0

    def test_idempotent(self):
        lines = [RevenueLine("D1", None, 100.0), RevenueLine("D2", 50.0, None)]
        assert calculate(lines, 5, "amount") == calculate(lines, 5, "amount")

    def test_revenue_sum_rounded_to_cents(self):
        lines = [RevenueLine("D1", None, 0.1), RevenueLine("D2", None, 0.2)]
        breakdown = calculate(lines, 0, "amount")
        assert breakdown.revenue == 0.3
        assert breakdown.final_revenue == 0.3
