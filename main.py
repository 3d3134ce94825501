import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from sqlalchemy.orm import Session

from cache import AnalyticsCache, MemoryCacheBackend, SqlCacheBackend
from clock import SystemClock
from config import get_settings
from database import SessionLocal, init_db
from errors import DataUnavailable, InputError
from periods import Granularity
from scheduler import SchedulerManager
from services import AnalyticsService
from trends import TrendResult

app = FastAPI(title="Finance Analytics")

clock = SystemClock()
analytics_cache = AnalyticsCache(
    SqlCacheBackend()
    if get_settings().cache_backend == "database"
    else MemoryCacheBackend(),
    clock,
)
scheduler_manager = SchedulerManager(analytics_cache)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_service(db: Session = Depends(get_db)) -> AnalyticsService:
    return AnalyticsService(db, analytics_cache, clock=clock)


def get_subject_id(x_subject_id: Optional[str] = Header(default=None)) -> str:
    if not x_subject_id:
        raise HTTPException(status_code=401, detail="Missing X-Subject-Id header")
    return x_subject_id


def get_auth_token(authorization: Optional[str] = Header(default=None)) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    return authorization.removeprefix("Bearer ").strip()


def _year_or_current(year: Optional[int]) -> int:
    if year is not None:
        return year
    return clock.now().year


def run_engine(fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except InputError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except DataUnavailable as exc:
        logging.warning(f"data_unavailable: {exc}")
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@app.on_event("startup")
def startup_event():
    init_db()
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


@app.get("/api/analytics/health")
def health():
    return {"status": "ok", "timestamp": clock.utcnow().isoformat()}


@app.get("/api/analytics/stats")
def api_stats(
    year: Optional[int] = None,
    month: Optional[int] = None,
    force_sync: bool = Query(default=False, alias="forceSync"),
    authorization: Optional[str] = Header(default=None),
    subject_id: str = Depends(get_subject_id),
    service: AnalyticsService = Depends(get_service),
):
    year = _year_or_current(year)
    token = authorization.removeprefix("Bearer ").strip() if authorization else None
    aggregate = run_engine(
        service.get_stats,
        subject_id,
        year,
        month,
        force_sync=force_sync,
        auth_token=token,
    )
    trends = run_engine(service.period_trend, subject_id, year, month)
    data = aggregate.to_dict()
    data["trends"] = trends.to_dict()
    return data


@app.get("/api/analytics/trends")
def api_trends(
    year: Optional[int] = None,
    period: str = "monthly",
    month: Optional[int] = None,
    subject_id: str = Depends(get_subject_id),
    service: AnalyticsService = Depends(get_service),
):
    year = _year_or_current(year)
    result = run_engine(service.get_trends, subject_id, year, period, month)
    if isinstance(result, TrendResult):
        return {"period": Granularity.monthly.value, "data": result.to_dict()}
    return {
        "period": Granularity.yearly.value,
        "data": {str(y): balance for y, balance in result.items()},
    }


@app.get("/api/analytics/forecast")
def api_forecast(
    subject_id: str = Depends(get_subject_id),
    service: AnalyticsService = Depends(get_service),
):
    return run_engine(service.get_forecast, subject_id).to_dict()


@app.get("/api/analytics/chart-data")
def api_chart_data(
    year: Optional[int] = None,
    subject_id: str = Depends(get_subject_id),
    service: AnalyticsService = Depends(get_service),
):
    return run_engine(service.chart_data, subject_id, _year_or_current(year))


@app.post("/api/analytics/sync")
def api_sync(
    subject_id: str = Depends(get_subject_id),
    token: str = Depends(get_auth_token),
    service: AnalyticsService = Depends(get_service),
):
    outcome = run_engine(service.sync, subject_id, token)
    return outcome.to_dict()


@app.get("/api/analytics/sync-status")
def api_sync_status(
    subject_id: str = Depends(get_subject_id),
    service: AnalyticsService = Depends(get_service),
):
    return run_engine(service.sync_status, subject_id).to_dict()


@app.post("/api/analytics/recalculate")
def api_recalculate(
    year: Optional[int] = None,
    subject_id: str = Depends(get_subject_id),
    service: AnalyticsService = Depends(get_service),
):
    result = run_engine(service.recalculate_all, subject_id, _year_or_current(year))
    return result.to_dict()


@app.delete("/api/analytics/data")
def api_clear(
    subject_id: str = Depends(get_subject_id),
    service: AnalyticsService = Depends(get_service),
):
    return run_engine(service.clear, subject_id)
