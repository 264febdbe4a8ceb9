"""FastAPI application exposing pool APR statistics."""

import logging
import time
from datetime import datetime
from typing import Generator, List

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram
from pydantic import BaseModel, ValidationError
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from .cache import TTLCache
from .config import settings
from .database import SessionLocal, init_db
from .filtering import filter_pool_stats, sort_and_limit
from .schemas import AprQueryParams
from .services import UnknownRoundError, get_pool_stats, list_rounds, resolve_range

limiter = Limiter(key_func=get_remote_address)
app = FastAPI(title=settings.api_title)
app.state.limiter = limiter
app.state.cache = TTLCache(
    max_entries=settings.cache_max_entries, ttl_seconds=settings.cache_ttl_seconds
)
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
init_db()

logger = logging.getLogger(__name__)

# API requests by method, matched route and status code
REQUEST_COUNTER = Counter(
    "api_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)
REQUEST_LATENCY = Histogram(
    "api_request_duration_seconds",
    "API request latency by matched route",
    ["endpoint"],
)


def _route_path(request: Request) -> str:
    # route template, not the raw path
    route = request.scope.get("route")
    return getattr(route, "path", "unmatched")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log each request with its APR query and record status and latency."""
    started = time.perf_counter()
    query = request.query_params
    if request.url.path == "/apr":
        logger.info(
            "GET /apr pool=%s round=%s start=%s end=%s",
            query.get("poolId"),
            query.get("roundId"),
            query.get("startAt"),
            query.get("endAt"),
        )
    status = "500"
    try:
        response = await call_next(request)
        status = str(response.status_code)
        return response
    except Exception:
        logger.exception("error handling %s %s", request.method, request.url.path)
        raise
    finally:
        endpoint = _route_path(request)
        elapsed = time.perf_counter() - started
        REQUEST_COUNTER.labels(method=request.method, endpoint=endpoint, status=status).inc()
        REQUEST_LATENCY.labels(endpoint=endpoint).observe(elapsed)
        logger.debug("%s %s -> %s in %.3fs", request.method, request.url.path, status, elapsed)


def get_db() -> Generator[Session, None, None]:
    """Session for one request; rolled back if the handler raised."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_cache(request: Request) -> TTLCache:
    """Response cache living as long as the application."""
    return request.app.state.cache


class RoundResponse(BaseModel):
    """A veBAL voting round."""

    round_number: int
    start_date: datetime
    end_date: datetime

    class Config:
        from_attributes = True


def _bad_request(error: str, details: list) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": error, "details": details})


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/rounds", response_model=List[RoundResponse])
def get_rounds(db: Session = Depends(get_db)):
    """Return every veBAL round seeded so far."""

    return list_rounds(db)


@app.get("/apr")
@limiter.limit(settings.api_rate_limit)
def get_apr(
    request: Request,
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_cache),
):
    """Return per-day pool APR statistics and their averages.

    Accepts either ``roundId`` or ``startAt``/``endAt``, an optional ``poolId``,
    the pool filters and ``sort``/``order``/``limit``/``offset``.
    """

    query = dict(request.query_params)
    try:
        params = AprQueryParams.model_validate(query)
    except ValidationError as exc:
        details = [
            {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
            for error in exc.errors()
        ]
        return _bad_request("Invalid query parameters", details)

    try:
        start, end = resolve_range(db, params.start_at, params.end_at, params.round_id)
    except UnknownRoundError as exc:
        return _bad_request("Invalid query parameters", [{"loc": ["roundId"], "msg": str(exc)}])

    results = cache.get_or_compute(
        ("pool_stats", params.pool_id, start, end),
        lambda: get_pool_stats(db, start, end, params.pool_id),
    )
    filtered = filter_pool_stats(results, query)
    per_day = sort_and_limit(
        filtered.per_day, params.sort, params.order, params.offset, params.limit
    )
    return filtered.model_copy(update={"per_day": per_day}).model_dump(by_alias=True)
