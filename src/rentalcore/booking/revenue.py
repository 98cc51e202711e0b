"""Flat-rate revenue and discount arithmetic.

Both figures are always derived from scratch from the current line items;
nothing is adjusted incrementally.
"""

from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class RevenueLine:
    device_id: str
    custom_price: Optional[float]
    flat_rate: Optional[float]

    @property
    def amount(self) -> float:
        if self.custom_price is not None and self.custom_price > 0:
            return self.custom_price
        if self.flat_rate is not None:
            return self.flat_rate
        return 0.0


@dataclass(frozen=True)
class RevenueBreakdown:
    revenue: float
    final_revenue: float


def apply_discount(revenue: float, discount: float, discount_type: str) -> float:
    """Final revenue after a percent or fixed-amount discount, never negative."""
    if discount_type == "percent":
        final = revenue * (1 - discount / 100)
    else:
        final = revenue - discount
    return round(max(final, 0.0), 2)


def calculate(
    lines: Iterable[RevenueLine], discount: float, discount_type: str,
) -> RevenueBreakdown:
    revenue = round(sum((line.amount for line in lines), 0.0), 2)
    return RevenueBreakdown(
        revenue=revenue,
        final_revenue=apply_discount(revenue, discount, discount_type),
    )
