from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class EstimatorConfig:
    exact_prefix_length: int = 8
    exact_year_tolerance: int = 1
    exact_row_limit: int | None = None

    make_year_tolerance: int = 2
    make_min_vin_length: int = 8
    make_row_limit: int = 50

    short_prefix_length: int = 6
    short_year_tolerance: int = 2
    short_row_limit: int = 20

    # Population standard deviation; a price is dropped only when its
    # deviation from the mean is strictly greater than this many sigmas.
    outlier_sigma: float = 2.0
