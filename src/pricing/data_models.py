from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


PricingTier = Literal["exact_prefix", "make", "short_prefix"]


@dataclass(frozen=True)
class HistoricalSaleRecord:
    vin: str
    sale_year: int
    make: str
    model: str
    sale_price: float


@dataclass(frozen=True)
class PricingQuery:
    vin: str
    year: int
    make_hint: str | None = None
    model_hint: str | None = None
    year_hint: str | None = None


@dataclass(frozen=True)
class PriceEstimate:
    price: int
    tier: PricingTier
    sample_size: int
    kept: int
    target_year: int
    decoded_make: str | None
