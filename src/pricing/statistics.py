from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np


@dataclass(frozen=True)
class FilteredMean:
    value: int
    kept: int
    degenerate: bool = False


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def filtered_mean(prices: Sequence[float], sigma: float = 2.0) -> FilteredMean:
    """Mean of the prices after dropping points more than `sigma` population
    standard deviations from the full-set mean.

    A single price is returned as-is. If every price is classified as an
    outlier the unfiltered mean is used.
    """
    if len(prices) == 0:
        raise ValueError("filtered_mean requires at least one price")
    values = np.asarray(prices, dtype=float)
    if values.size == 1:
        return FilteredMean(value=round_half_up(float(values[0])), kept=1)

    mean = float(values.mean())
    std = float(values.std(ddof=0))
    deviation = np.abs(values - mean)
    limit = sigma * std
    # Points sitting on the limit stay in, despite float error in std.
    keep = (deviation <= limit) | np.isclose(deviation, limit, rtol=1e-9, atol=0.0)
    if not keep.any():
        return FilteredMean(value=round_half_up(mean), kept=int(values.size), degenerate=True)
    return FilteredMean(value=round_half_up(float(values[keep].mean())), kept=int(keep.sum()))
