from __future__ import annotations

import io
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import pandas as pd

logger = logging.getLogger(__name__)

VIN_LENGTH = 17

# Auction feed header -> vehicle_pricing column. Text columns are copied as-is.
TEXT_COLUMNS: dict[str, str] = {
    "Automobile": "automobile",
    "Lot Make": "lot_make",
    "Lot Model": "lot_model",
    "Drivetrain": "drivetrain",
    "Vehicle Body Style": "vehicle_body_style",
    "Vehicle Engine": "vehicle_engine",
    "Lot Run Condition": "lot_run_condition",
    "Sale Title Type": "sale_title_type",
    "Damage Type Description": "damage_type_description",
    "Damage Type Descrition": "damage_type_description",
    "Odometer Reading": "odometer_reading",
    "Title Type": "title_type",
    "Lot Color": "lot_color",
    "Transmission Type": "transmission_type",
    "Lot Fuel Type": "lot_fuel_type",
    "Yard State": "yard_state",
}


@dataclass
class ImportResult:
    rows: list[dict[str, Any]] = field(default_factory=list)
    skipped: int = 0


def parse_pricing_csv(content: bytes) -> ImportResult:
    """Parse an auction sales export into `vehicle_pricing` rows.

    Rows without a 17-character VIN or a positive sale price are skipped.
    Raises ValueError when the upload is empty or not a readable CSV.
    """
    if not content or not content.strip():
        raise ValueError("CSV file is empty")
    try:
        frame = pd.read_csv(io.BytesIO(content), dtype=str, skipinitialspace=True)
    except (pd.errors.EmptyDataError, pd.errors.ParserError, UnicodeDecodeError) as exc:
        raise ValueError(f"Unreadable CSV: {exc}") from exc

    frame.columns = [str(c).strip() for c in frame.columns]
    if "VIN" not in frame.columns or "Sale Price" not in frame.columns:
        raise ValueError("CSV must include 'VIN' and 'Sale Price' columns")

    result = ImportResult()
    for record in frame.to_dict(orient="records"):
        row = _build_row(record)
        if row is None:
            result.skipped += 1
            continue
        result.rows.append(row)

    logger.info("Parsed pricing CSV: %d rows accepted, %d skipped", len(result.rows), result.skipped)
    return result


def _build_row(record: dict[str, Any]) -> dict[str, Any] | None:
    vin = _clean(record.get("VIN"))
    if vin is None or len(vin) != VIN_LENGTH:
        return None
    price = _parse_float(record.get("Sale Price"))
    if price is None or price <= 0:
        return None

    row: dict[str, Any] = {column: None for column in TEXT_COLUMNS.values()}
    for header, column in TEXT_COLUMNS.items():
        value = _clean(record.get(header))
        if value is not None and row[column] is None:
            row[column] = value

    year = _parse_float(record.get("Lot Year"))
    row.update(
        vin=vin.upper(),
        sale_price=price,
        lot_year=int(year) if year is not None else None,
        lot_make=row["lot_make"].upper() if row["lot_make"] else None,
        invoice_date=_parse_date(record.get("Invoice Date")),
    )
    return row


def _clean(value: Any) -> str | None:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return None
    text = str(value).strip()
    return text or None


def _parse_float(value: Any) -> float | None:
    text = _clean(value)
    if text is None:
        return None
    try:
        parsed = float(text.replace("$", "").replace(",", ""))
    except ValueError:
        return None
    return parsed if math.isfinite(parsed) else None


def _parse_date(value: Any) -> datetime | None:
    text = _clean(value)
    if text is None:
        return None
    parsed = pd.to_datetime(text, errors="coerce", utc=True)
    if pd.isna(parsed):
        return None
    return parsed.to_pydatetime()
