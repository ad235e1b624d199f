# -*- coding: utf-8 -*-
"""
Pricing for star orders.

Prices are a fixed rate per star in two settlement currencies, rounded
half-up to kopecks / cents. They are computed once when the order is created.
"""
import re
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

CENTS = Decimal("0.01")

DEFAULT_RUB_PER_STAR = Decimal("1.8")
DEFAULT_USDT_PER_STAR = Decimal("0.025")


@dataclass(frozen=True)
class Price:
    rub: Decimal
    usdt: Decimal


def _amount(quantity: int, rate: Decimal) -> Decimal:
    return (Decimal(quantity) * Decimal(str(rate))).quantize(CENTS, rounding=ROUND_HALF_UP)


def calculate_price(quantity: int,
                    rub_rate: Decimal = DEFAULT_RUB_PER_STAR,
                    usdt_rate: Decimal = DEFAULT_USDT_PER_STAR) -> Price:
    """
    Calculate the price of a quantity of stars.

    Args:
        quantity: Number of stars
        rub_rate: RUB per star
        usdt_rate: USDT per star

    Returns:
        Price in both settlement currencies
    """
    return Price(rub=_amount(quantity, rub_rate), usdt=_amount(quantity, usdt_rate))


def parse_quantity(text: str, min_quantity: int, max_quantity: int) -> Optional[int]:
    """Parse a free-text star count ("1 000", "500 stars"); None if invalid or out of range."""
    digits = re.sub(r"\D", "", str(text or ""))
    if not digits:
        return None
    quantity = int(digits)
    if quantity < min_quantity or quantity > max_quantity:
        return None
    return quantity
