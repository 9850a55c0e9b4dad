from __future__ import annotations

import logging
from typing import Awaitable, Callable, Protocol

from pricing.config import EstimatorConfig
from pricing.data_models import HistoricalSaleRecord, PriceEstimate, PricingQuery, PricingTier
from pricing.statistics import filtered_mean
from pricing.vin_tables import decode_make, normalize_make_hint, resolve_target_year

logger = logging.getLogger(__name__)


class SalesSource(Protocol):
    async def query_by_prefix(
        self,
        *,
        prefix: str,
        prefix_length: int,
        year_target: int,
        year_tolerance: int,
        limit: int | None = None,
    ) -> list[HistoricalSaleRecord]: ...

    async def query_by_make(
        self,
        *,
        make: str,
        year_target: int,
        year_tolerance: int,
        min_vin_length: int,
        limit: int | None = None,
        model: str | None = None,
    ) -> list[HistoricalSaleRecord]: ...


class PricingEstimator:
    """Estimate a raw trade-in value from comparable historical sales.

    Tiers run in order and stop at the first one returning rows:
    exact 8-char VIN prefix (±1 year), decoded make (±2 years, 50 rows),
    short 6-char VIN prefix (±2 years, 20 rows). Storage errors inside a
    tier count as an empty tier.
    """

    def __init__(self, source: SalesSource, config: EstimatorConfig | None = None) -> None:
        self.source = source
        self.config = config or EstimatorConfig()

    async def estimate(self, query: PricingQuery) -> PriceEstimate | None:
        try:
            return await self._estimate(query)
        except Exception:
            logger.exception("Pricing estimate failed for VIN %s", query.vin)
            return None

    async def _estimate(self, query: PricingQuery) -> PriceEstimate | None:
        cfg = self.config
        vin = query.vin.strip().upper()
        target_year = resolve_target_year(vin, query.year)
        make = decode_make(vin) or normalize_make_hint(query.make_hint)

        logger.info(
            "Pricing lookup vin=%s target_year=%s submitted_year=%s make=%s",
            vin, target_year, query.year, make,
        )
        if query.year_hint and query.year_hint.strip() != str(target_year):
            logger.debug("Year hint %s differs from target year %s", query.year_hint, target_year)

        tiers: list[tuple[PricingTier, Callable[[], Awaitable[list[HistoricalSaleRecord]]]]] = []
        if len(vin) >= cfg.exact_prefix_length:
            tiers.append(("exact_prefix", lambda: self.source.query_by_prefix(
                prefix=vin[: cfg.exact_prefix_length],
                prefix_length=cfg.exact_prefix_length,
                year_target=target_year,
                year_tolerance=cfg.exact_year_tolerance,
                limit=cfg.exact_row_limit,
            )))
            if make:
                tiers.append(("make", lambda: self._query_make(make, query.model_hint, target_year)))
        if len(vin) >= cfg.short_prefix_length:
            tiers.append(("short_prefix", lambda: self.source.query_by_prefix(
                prefix=vin[: cfg.short_prefix_length],
                prefix_length=cfg.short_prefix_length,
                year_target=target_year,
                year_tolerance=cfg.short_year_tolerance,
                limit=cfg.short_row_limit,
            )))

        for tier, run in tiers:
            rows = await self._run_tier(tier, run)
            prices = [float(r.sale_price) for r in rows if r.sale_price > 0]
            logger.debug("Tier %s returned %d rows", tier, len(prices))
            if not prices:
                continue

            result = filtered_mean(prices, sigma=cfg.outlier_sigma)
            if result.degenerate:
                logger.info("All %d prices flagged as outliers, using unfiltered mean", len(prices))
            logger.info(
                "Priced vin=%s via %s: %d rows, %d kept, price=%d",
                vin, tier, len(prices), result.kept, result.value,
            )
            return PriceEstimate(
                price=result.value,
                tier=tier,
                sample_size=len(prices),
                kept=result.kept,
                target_year=target_year,
                decoded_make=make,
            )

        logger.info("No pricing data found for vin=%s", vin)
        return None

    async def _query_make(self, make: str, model_hint: str | None, target_year: int) -> list[HistoricalSaleRecord]:
        cfg = self.config
        if model_hint and model_hint.strip():
            rows = await self.source.query_by_make(
                make=make,
                year_target=target_year,
                year_tolerance=cfg.make_year_tolerance,
                min_vin_length=cfg.make_min_vin_length,
                limit=cfg.make_row_limit,
                model=model_hint.strip(),
            )
            if rows:
                return rows
        return await self.source.query_by_make(
            make=make,
            year_target=target_year,
            year_tolerance=cfg.make_year_tolerance,
            min_vin_length=cfg.make_min_vin_length,
            limit=cfg.make_row_limit,
        )

    async def _run_tier(
        self,
        tier: PricingTier,
        run: Callable[[], Awaitable[list[HistoricalSaleRecord]]],
    ) -> list[HistoricalSaleRecord]:
        try:
            return await run()
        except Exception as exc:
            logger.warning("Pricing tier %s failed: %s", tier, exc)
            return []


async def estimate_price(
    source: SalesSource,
    vin: str,
    year: int,
    make_hint: str | None = None,
    model_hint: str | None = None,
    year_hint: str | None = None,
    config: EstimatorConfig | None = None,
) -> int | None:
    """Return the estimated raw price, or None when nothing comparable exists."""
    estimate = await PricingEstimator(source, config).estimate(
        PricingQuery(vin=vin, year=year, make_hint=make_hint, model_hint=model_hint, year_hint=year_hint)
    )
    return None if estimate is None else estimate.price
