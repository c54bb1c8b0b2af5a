"""
Pricing & discount engine.

Totals are computed from the price snapshots captured on each reserved line.
Discounts come from an ordered list of rules; the first rule that applies wins
and discounts never stack.
"""

import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Protocol, Sequence

from order_fulfillment import config
from order_fulfillment.models import OrderLine

NO_DISCOUNT_NOTE = "No discount"


@dataclass(frozen=True)
class Discount:
    amount: Decimal
    note: str


@dataclass(frozen=True)
class Quote:
    total: Decimal
    discount: Decimal
    note: str


class DiscountRule(Protocol):
    def apply(self, total: Decimal, promo_code: Optional[str]) -> Optional[Discount]:
        ...


class PromoCodeDiscount:
    """Percentage discount granted when the promo code matches a keyword, ignoring case."""

    def __init__(self, keyword: str, rate: Decimal):
        self.keyword = keyword
        self.rate = rate

    def matches(self, promo_code: Optional[str]) -> bool:
        if promo_code is None:
            return False
        return promo_code.casefold() == self.keyword.casefold()

    def apply(self, total: Decimal, promo_code: Optional[str]) -> Optional[Discount]:
        if not self.matches(promo_code):
            return None
        percent = (self.rate * 100).normalize()
        # Currency scale: the total's own exponent, at least cents.
        exponent = min(total.as_tuple().exponent, -2)
        amount = (total * self.rate).quantize(Decimal(1).scaleb(exponent), rounding=ROUND_HALF_UP)
        return Discount(
            amount=amount,
            note=f"{percent:f}% discount applied (promo: {self.keyword})",
        )


def compute_total(lines: Iterable[OrderLine]) -> Decimal:
    return sum((line.line_total for line in lines), Decimal("0"))


def default_rules() -> Sequence[DiscountRule]:
    return [PromoCodeDiscount(config.PROMO_KEYWORD, config.PROMO_DISCOUNT_RATE)]


class PricingEngine:
    def __init__(self, rules: Optional[Sequence[DiscountRule]] = None, delay_ms: int = 0):
        self.rules = list(rules) if rules is not None else list(default_rules())
        self.delay_ms = delay_ms

    def quote(self, lines: Sequence[OrderLine], promo_code: Optional[str]) -> Quote:
        # Simulated business-rule latency
        if self.delay_ms > 0:
            time.sleep(self.delay_ms / 1000.0)

        total = compute_total(lines)
        for rule in self.rules:
            discount = rule.apply(total, promo_code)
            if discount is not None:
                return Quote(total=total, discount=discount.amount, note=discount.note)
        return Quote(total=total, discount=Decimal("0"), note=NO_DISCOUNT_NOTE)
