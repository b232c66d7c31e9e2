"""Task price generation."""

from __future__ import annotations

import random
from decimal import ROUND_HALF_UP, Decimal

MIN_PRICE = Decimal("5.00")
MAX_PRICE = Decimal("50.00")
_CENT = Decimal("0.01")


def random_task_price(rng: random.Random | None = None) -> Decimal:
    """Uniform random price in [5.00, 50.00], rounded half-up to cents.

    The draw is a float; rounding can nudge it past a bound, so the result
    is clamped back into range.
    """

    source = rng or random
    raw = source.uniform(float(MIN_PRICE), float(MAX_PRICE))
    price = Decimal(str(raw)).quantize(_CENT, rounding=ROUND_HALF_UP)
    return min(MAX_PRICE, max(MIN_PRICE, price))
