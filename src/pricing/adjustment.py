from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pricing.statistics import round_half_up


MarginType = Literal["percentage", "fixed"]
MARGIN_TYPES: tuple[str, ...] = ("percentage", "fixed")


@dataclass(frozen=True)
class MarginSettings:
    margin_type: MarginType = "percentage"
    margin_value: float = 10.0
    service_charge: float = 50.0

    def __post_init__(self) -> None:
        if self.margin_type not in MARGIN_TYPES:
            raise ValueError(f"Unsupported margin type '{self.margin_type}'")


def apply_margin(raw_price: float, settings: MarginSettings) -> int:
    """Turn a raw estimate into the customer-facing offer, never below zero."""
    if settings.margin_type == "percentage":
        price = raw_price * (1 - settings.margin_value / 100)
    else:
        price = raw_price - settings.margin_value
    price -= settings.service_charge
    return round_half_up(max(0.0, price))
