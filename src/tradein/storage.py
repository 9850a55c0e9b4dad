from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Mapping
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
    insert,
    select,
    update,
)
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from pricing.adjustment import MARGIN_TYPES, MarginSettings
from pricing.data_models import HistoricalSaleRecord

logger = logging.getLogger(__name__)


metadata = MetaData()

vehicle_pricing_table = Table(
    "vehicle_pricing",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("vin", String(32), nullable=True, index=True),
    Column("lot_year", Integer, nullable=True),
    Column("lot_make", String(32), nullable=True, index=True),
    Column("lot_model", String(128), nullable=True),
    Column("sale_price", Float, nullable=False),
    Column("automobile", String(255), nullable=True),
    Column("drivetrain", String(64), nullable=True),
    Column("vehicle_body_style", String(64), nullable=True),
    Column("vehicle_engine", String(64), nullable=True),
    Column("invoice_date", DateTime(timezone=True), nullable=True),
    Column("lot_run_condition", String(64), nullable=True),
    Column("sale_title_type", String(64), nullable=True),
    Column("damage_type_description", String(128), nullable=True),
    Column("odometer_reading", String(32), nullable=True),
    Column("title_type", String(64), nullable=True),
    Column("lot_color", String(64), nullable=True),
    Column("transmission_type", String(64), nullable=True),
    Column("lot_fuel_type", String(64), nullable=True),
    Column("yard_state", String(16), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

admin_settings_table = Table(
    "admin_settings",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("setting_key", String(100), nullable=False, unique=True),
    Column("setting_value", String(255), nullable=False),
    Column("setting_type", String(50), nullable=False),
    Column("description", Text, nullable=True),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

MARGIN_SETTING_DEFS: dict[str, tuple[str, str]] = {
    "margin_type": ("string", "Type of margin: percentage or fixed"),
    "margin_value": ("number", "Margin value (percentage or fixed dollar amount)"),
    "service_charge": ("number", "Service charge per car in dollars"),
}


def to_sale_record(row: Mapping[str, Any]) -> HistoricalSaleRecord | None:
    """Map a raw `vehicle_pricing` row to a typed record.

    Rows with no VIN, or with a year or price that is not a finite number,
    are returned as None and never take part in matching.
    """
    vin = row.get("vin")
    if not vin:
        return None
    try:
        sale_year = int(row["lot_year"])
        sale_price = float(row["sale_price"])
    except (KeyError, TypeError, ValueError):
        return None
    if not math.isfinite(sale_price):
        return None
    return HistoricalSaleRecord(
        vin=str(vin).strip().upper(),
        sale_year=sale_year,
        make=str(row.get("lot_make") or "").strip().upper(),
        model=str(row.get("lot_model") or "").strip(),
        sale_price=sale_price,
    )


def margin_settings_from_values(values: Mapping[str, str]) -> MarginSettings:
    defaults = MarginSettings()
    margin_type = values.get("margin_type", defaults.margin_type)
    if margin_type not in MARGIN_TYPES:
        logger.warning("Ignoring unknown margin_type %r", margin_type)
        margin_type = defaults.margin_type
    return MarginSettings(
        margin_type=margin_type,  # type: ignore[arg-type]
        margin_value=_parse_number(values, "margin_value", defaults.margin_value),
        service_charge=_parse_number(values, "service_charge", defaults.service_charge),
    )


def _parse_number(values: Mapping[str, str], key: str, default: float) -> float:
    raw = values.get(key)
    if raw is None:
        return default
    try:
        parsed = float(raw)
    except (TypeError, ValueError):
        logger.warning("Ignoring unparsable %s=%r", key, raw)
        return default
    return parsed if math.isfinite(parsed) else default


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


class SalesStore:
    """Historical sales and admin settings behind an async SQLAlchemy engine.

    Falls back to process memory when the database cannot be reached at
    startup, so the funnel keeps answering (with no comparables) instead of
    crashing.
    """

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.engine: AsyncEngine | None = None
        self._fallback_mode = False
        self._mem_sales: list[dict[str, Any]] = []
        self._mem_settings: dict[str, dict[str, Any]] = {}

    async def connect(self) -> None:
        try:
            self.engine = create_async_engine(self.dsn, future=True, pool_pre_ping=True)
            await self.init_schema()
        except Exception as exc:
            logger.warning("Database unavailable, using in-memory store: %s", exc)
            self._fallback_mode = True
            self.engine = None

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()

    async def ping(self) -> bool:
        if self.engine is None or self._fallback_mode:
            return False
        try:
            async with self.engine.connect() as conn:
                await conn.execute(select(1))
            return True
        except Exception:
            return False

    async def init_schema(self) -> None:
        if self.engine is None:
            return
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    # ── Historical sales ────────────────────────────────────────────

    async def insert_sales(self, rows: Iterable[dict[str, Any]]) -> int:
        now = datetime.now(timezone.utc)
        prepared = [{**row, "id": str(uuid4()), "created_at": now} for row in rows]
        if not prepared:
            return 0
        if self.engine is None:
            self._mem_sales.extend(prepared)
            return len(prepared)
        async with self.engine.begin() as conn:
            await conn.execute(insert(vehicle_pricing_table), prepared)
        return len(prepared)

    async def query_by_prefix(
        self,
        *,
        prefix: str,
        prefix_length: int,
        year_target: int,
        year_tolerance: int,
        limit: int | None = None,
    ) -> list[HistoricalSaleRecord]:
        prefix = prefix.upper()
        if self.engine is None:
            return self._mem_query(
                lambda rec: rec.vin[:prefix_length] == prefix,
                year_target=year_target,
                year_tolerance=year_tolerance,
                min_vin_length=prefix_length,
                limit=limit,
            )
        t = vehicle_pricing_table
        return await self._sql_query(
            [func.substr(t.c.vin, 1, prefix_length) == prefix],
            year_target=year_target,
            year_tolerance=year_tolerance,
            min_vin_length=prefix_length,
            limit=limit,
        )

    async def query_by_make(
        self,
        *,
        make: str,
        year_target: int,
        year_tolerance: int,
        min_vin_length: int,
        limit: int | None = None,
        model: str | None = None,
    ) -> list[HistoricalSaleRecord]:
        make = make.upper()
        model_key = model.strip().lower() if model else None
        if self.engine is None:
            return self._mem_query(
                lambda rec: rec.make == make and (model_key is None or rec.model.lower() == model_key),
                year_target=year_target,
                year_tolerance=year_tolerance,
                min_vin_length=min_vin_length,
                limit=limit,
            )
        t = vehicle_pricing_table
        conditions = [t.c.lot_make == make]
        if model_key is not None:
            conditions.append(func.lower(t.c.lot_model) == model_key)
        return await self._sql_query(
            conditions,
            year_target=year_target,
            year_tolerance=year_tolerance,
            min_vin_length=min_vin_length,
            limit=limit,
        )

    async def _sql_query(
        self,
        conditions: list[Any],
        *,
        year_target: int,
        year_tolerance: int,
        min_vin_length: int,
        limit: int | None,
    ) -> list[HistoricalSaleRecord]:
        assert self.engine is not None
        t = vehicle_pricing_table
        year_distance = func.abs(t.c.lot_year - year_target)
        stmt = (
            select(t.c.vin, t.c.lot_year, t.c.lot_make, t.c.lot_model, t.c.sale_price)
            .where(t.c.sale_price > 0)
            .where(t.c.vin.is_not(None))
            .where(func.length(t.c.vin) >= min_vin_length)
            .where(year_distance <= year_tolerance)
            .where(*conditions)
            .order_by(year_distance, t.c.sale_price)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self.engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        records = [to_sale_record(r._mapping) for r in rows]
        return [r for r in records if r is not None and r.sale_price > 0]

    def _mem_query(
        self,
        predicate: Callable[[HistoricalSaleRecord], bool],
        *,
        year_target: int,
        year_tolerance: int,
        min_vin_length: int,
        limit: int | None,
    ) -> list[HistoricalSaleRecord]:
        matches: list[HistoricalSaleRecord] = []
        for row in self._mem_sales:
            rec = to_sale_record(row)
            if rec is None or rec.sale_price <= 0 or len(rec.vin) < min_vin_length:
                continue
            if abs(rec.sale_year - year_target) > year_tolerance:
                continue
            if predicate(rec):
                matches.append(rec)
        matches.sort(key=lambda r: (abs(r.sale_year - year_target), r.sale_price))
        return matches if limit is None else matches[:limit]

    # ── Admin settings ──────────────────────────────────────────────

    async def get_margin_settings(self) -> MarginSettings:
        keys = list(MARGIN_SETTING_DEFS)
        if self.engine is None:
            values = {k: v["setting_value"] for k, v in self._mem_settings.items() if k in keys}
            return margin_settings_from_values(values)
        t = admin_settings_table
        stmt = select(t.c.setting_key, t.c.setting_value).where(t.c.setting_key.in_(keys))
        async with self.engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        return margin_settings_from_values({r.setting_key: r.setting_value for r in rows})

    async def update_margin_settings(self, settings: MarginSettings) -> MarginSettings:
        now = datetime.now(timezone.utc)
        values = {
            "margin_type": settings.margin_type,
            "margin_value": _format_number(settings.margin_value),
            "service_charge": _format_number(settings.service_charge),
        }
        if self.engine is None:
            for key, value in values.items():
                setting_type, description = MARGIN_SETTING_DEFS[key]
                existing = self._mem_settings.get(key)
                self._mem_settings[key] = {
                    "id": existing["id"] if existing else str(uuid4()),
                    "setting_key": key,
                    "setting_value": value,
                    "setting_type": setting_type,
                    "description": description,
                    "updated_at": now,
                }
            logger.info("Pricing settings updated: %s", values)
            return settings

        t = admin_settings_table
        async with self.engine.begin() as conn:
            for key, value in values.items():
                result = await conn.execute(
                    update(t).where(t.c.setting_key == key).values(setting_value=value, updated_at=now)
                )
                if result.rowcount == 0:
                    setting_type, description = MARGIN_SETTING_DEFS[key]
                    await conn.execute(
                        insert(t).values(
                            id=str(uuid4()),
                            setting_key=key,
                            setting_value=value,
                            setting_type=setting_type,
                            description=description,
                            updated_at=now,
                        )
                    )
        logger.info("Pricing settings updated: %s", values)
        return settings
