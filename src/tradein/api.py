from __future__ import annotations

import logging
import time
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Literal

from fastapi import Depends, FastAPI, File, HTTPException, Request, Response, UploadFile, status
from pydantic import BaseModel, ConfigDict, Field, model_validator

from pricing.adjustment import MarginSettings, apply_margin
from pricing.config import EstimatorConfig
from pricing.data_models import PricingQuery
from pricing.estimator import PricingEstimator
from tradein.auth import AdminAuth, RateLimiter
from tradein.importer import parse_pricing_csv
from tradein.logging_config import configure_logging, correlation_id, new_correlation_id
from tradein.sessions import AdminSession, RedisSessionStore, SessionStore
from tradein.settings import ServiceSettings
from tradein.storage import SalesStore

logger = logging.getLogger(__name__)


# ── Request / Response Models ───────────────────────────────────────

class PricingLookupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    vin: str = Field(min_length=17, max_length=17)
    year: int = Field(ge=1, le=9999)
    vehicle_make: str | None = Field(default=None, alias="vehicleMake")
    vehicle_model: str | None = Field(default=None, alias="vehicleModel")
    vehicle_year: str | int | None = Field(default=None, alias="vehicleYear")


class PricingLookupResponse(BaseModel):
    price: int


class ImportResponse(BaseModel):
    message: str
    imported: int
    skipped: int


class LoginRequest(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class AdminInfo(BaseModel):
    username: str


class LoginResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    admin: AdminInfo
    expires_at: datetime = Field(alias="expiresAt")


class PricingSettingsModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    margin_type: Literal["percentage", "fixed"] = Field(alias="marginType")
    margin_value: float = Field(ge=0, alias="marginValue")
    service_charge: float = Field(ge=0, alias="serviceCharge")

    @model_validator(mode="after")
    def _percentage_in_range(self) -> "PricingSettingsModel":
        if self.margin_type == "percentage" and self.margin_value > 100:
            raise ValueError("percentage margin cannot exceed 100")
        return self

    @classmethod
    def from_settings(cls, settings: MarginSettings) -> "PricingSettingsModel":
        return cls(
            margin_type=settings.margin_type,
            margin_value=settings.margin_value,
            service_charge=settings.service_charge,
        )

    def to_settings(self) -> MarginSettings:
        return MarginSettings(
            margin_type=self.margin_type,
            margin_value=self.margin_value,
            service_charge=self.service_charge,
        )


class HealthResponse(BaseModel):
    status: str


class ReadinessResponse(BaseModel):
    status: str
    checks: dict[str, bool]


# ── Metrics ─────────────────────────────────────────────────────────

class ServiceMetrics:
    """Request counters plus a rolling window of recent latencies per metric."""

    def __init__(self, window: int = 1000) -> None:
        self.counters: dict[str, int] = defaultdict(int)
        self.latencies: dict[str, deque[float]] = defaultdict(lambda: deque(maxlen=window))

    def record_latency(self, name: str, seconds: float) -> None:
        self.latencies[name].append(seconds)
        self.counters[f"{name}_count"] += 1

    def snapshot(self) -> dict[str, Any]:
        lookups = sorted(self.latencies.get("pricing_lookup", []))
        n = len(lookups)
        return {
            "counters": dict(self.counters),
            "pricing_lookup_latency": {
                "count": self.counters.get("pricing_lookup_count", 0),
                "window": n,
                "p50_ms": round(lookups[n // 2] * 1000, 1) if n else 0,
                "p95_ms": round(lookups[min(int(n * 0.95), n - 1)] * 1000, 1) if n else 0,
                "p99_ms": round(lookups[min(int(n * 0.99), n - 1)] * 1000, 1) if n else 0,
            },
        }


# ── App Factory ─────────────────────────────────────────────────────

def create_app(
    settings: ServiceSettings | None = None,
    *,
    store: SalesStore | None = None,
    session_store: SessionStore | None = None,
) -> FastAPI:
    settings = settings or ServiceSettings()
    configure_logging(level=settings.log_level, fmt=settings.log_format)

    store = store or SalesStore(dsn=settings.postgres_dsn)
    sessions: SessionStore = session_store or RedisSessionStore(
        redis_url=settings.redis_url, ttl_seconds=settings.admin_session_ttl_seconds,
    )
    estimator = PricingEstimator(store, EstimatorConfig())
    auth = AdminAuth(
        username=settings.admin_username,
        password_sha256=settings.admin_password_sha256,
        sessions=sessions,
    )
    limiter = RateLimiter(requests_per_minute=settings.rate_limit_rpm)
    metrics = ServiceMetrics()

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await store.connect()
        await sessions.connect()
        try:
            yield
        finally:
            await sessions.close()
            await store.close()

    app = FastAPI(title="Trade-in Pricing API", version="1.0.0", lifespan=lifespan)
    app.state.store = store
    app.state.sessions = sessions

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next: Any) -> Response:
        cid = request.headers.get("X-Correlation-ID") or new_correlation_id()
        correlation_id.set(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response

    @app.middleware("http")
    async def rate_limit_middleware(request: Request, call_next: Any) -> Response:
        return await limiter.middleware(request, call_next)

    # ── Pricing ─────────────────────────────────────────────────────

    @app.post("/pricing/lookup", response_model=PricingLookupResponse)
    async def pricing_lookup(payload: PricingLookupRequest) -> PricingLookupResponse:
        t0 = time.monotonic()
        estimate = await estimator.estimate(
            PricingQuery(
                vin=payload.vin,
                year=payload.year,
                make_hint=payload.vehicle_make or None,
                model_hint=payload.vehicle_model or None,
                year_hint=str(payload.vehicle_year) if payload.vehicle_year else None,
            )
        )
        metrics.record_latency("pricing_lookup", time.monotonic() - t0)

        if estimate is None:
            metrics.counters["pricing_no_match"] += 1
            logger.info("No pricing data for VIN %s, year %s", payload.vin, payload.year)
            raise HTTPException(status_code=404, detail="No pricing data found for this vehicle")

        margin = await store.get_margin_settings()
        offer = apply_margin(estimate.price, margin)
        metrics.counters[f"pricing_tier_{estimate.tier}"] += 1
        logger.info(
            "Offer for VIN %s: raw=%d margin=%s:%s service_charge=%s final=%d",
            payload.vin, estimate.price, margin.margin_type, margin.margin_value,
            margin.service_charge, offer,
        )
        return PricingLookupResponse(price=offer)

    @app.post("/pricing/import", response_model=ImportResponse)
    async def pricing_import(
        csv_file: UploadFile = File(..., alias="csvFile"),
        _: AdminSession = Depends(auth),
    ) -> ImportResponse:
        content = await csv_file.read()
        try:
            parsed = parse_pricing_csv(content)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        imported = await store.insert_sales(parsed.rows)
        metrics.counters["pricing_rows_imported"] += imported
        return ImportResponse(
            message=f"Successfully imported {imported} pricing records",
            imported=imported,
            skipped=parsed.skipped,
        )

    # ── Admin ───────────────────────────────────────────────────────

    @app.post("/admin/login", response_model=LoginResponse)
    async def admin_login(req: LoginRequest) -> LoginResponse:
        session = await auth.login(req.username, req.password)
        if session is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
        return LoginResponse(
            session_id=session.token,
            admin=AdminInfo(username=session.username),
            expires_at=datetime.fromtimestamp(session.expires_at, tz=timezone.utc),
        )

    @app.post("/admin/logout")
    async def admin_logout(session: AdminSession = Depends(auth)) -> dict[str, str]:
        await auth.logout(session)
        return {"message": "Logged out successfully"}

    @app.get("/admin/settings/pricing", response_model=PricingSettingsModel)
    async def get_pricing_settings(_: AdminSession = Depends(auth)) -> PricingSettingsModel:
        return PricingSettingsModel.from_settings(await store.get_margin_settings())

    @app.put("/admin/settings/pricing", response_model=PricingSettingsModel)
    async def put_pricing_settings(
        req: PricingSettingsModel, session: AdminSession = Depends(auth),
    ) -> PricingSettingsModel:
        updated = await store.update_margin_settings(req.to_settings())
        logger.info("Pricing settings changed by %s", session.username)
        return PricingSettingsModel.from_settings(updated)

    # ── Health ──────────────────────────────────────────────────────

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/healthz", response_model=HealthResponse)
    async def healthz() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/ready", response_model=ReadinessResponse)
    async def ready() -> ReadinessResponse:
        checks = {
            "postgres": await store.ping(),
            "sessions": await sessions.ping(),
        }
        if not all(checks.values()):
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=ReadinessResponse(status="degraded", checks=checks).model_dump(),
            )
        return ReadinessResponse(status="ready", checks=checks)

    @app.get("/metrics")
    async def get_metrics() -> dict[str, Any]:
        return metrics.snapshot()

    return app


app = create_app()
