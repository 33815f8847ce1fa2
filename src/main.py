"""FastAPI application entrypoint.

Exposes the resilient supplier catalog mirror:

- ``GET /api/external/supplier-products``: live data, cached fallback, or 503
- ``GET /api/external/status``: circuit breaker snapshot
- ``GET /health``: service health

Every supplier response carries an ``X-Circuit-Breaker-State`` header.
"""

import logging
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse

from src.cache.result_cache import ResultCache
from src.core.config import Settings, build_retry_policy
from src.core.errors import StructuredErrorResponse
from src.models.schemas import HealthResponse, StatusResponse
from src.resilience.circuit_breaker import CircuitBreaker
from src.resilience.fetcher import ResilientFetcher
from src.resilience.retry import BackoffRetrier
from src.upstream.supplier_client import SupplierClient

logger = logging.getLogger(__name__)

settings = Settings()

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

_start_time = time.monotonic()

CIRCUIT_STATE_HEADER = "X-Circuit-Breaker-State"


def create_redis_client(settings: Settings):
    """Build an async Redis client; ``None`` puts the cache in degraded mode."""
    try:
        import redis.asyncio as aioredis

        return aioredis.from_url(settings.REDIS_URL)
    except Exception as exc:
        logger.warning("Redis client unavailable, running without cache: %s", exc)
        return None


def build_fetcher(settings: Settings, supplier: SupplierClient, cache: ResultCache) -> ResilientFetcher:
    """Wire breaker, retrier and cache around the supplier products call."""
    breaker = CircuitBreaker(
        name="supplier-api",
        failure_threshold=settings.CIRCUIT_BREAKER_THRESHOLD,
        reset_timeout_ms=settings.CIRCUIT_BREAKER_RESET_TIMEOUT_MS,
    )
    policy = build_retry_policy(settings)

    async def fetch_products():
        return await supplier.get_json(settings.SUPPLIER_PRODUCTS_PATH)

    return ResilientFetcher(
        upstream_call=fetch_products,
        breaker=breaker,
        retrier=BackoffRetrier(policy),
        cache=cache,
        retry_policy=policy,
        cache_ttl_seconds=settings.CACHE_TTL_SECONDS,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    redis_client = create_redis_client(settings)
    supplier = SupplierClient(
        settings.SUPPLIER_API_URL,
        timeout_ms=settings.UPSTREAM_TIMEOUT_MS,
        user_agent=f"{settings.SERVICE_NAME}/{settings.SERVICE_VERSION}",
    )
    app.state.cache = ResultCache(redis_client)
    app.state.fetcher = build_fetcher(settings, supplier, app.state.cache)
    logger.info("Supplier gateway ready (upstream %s)", settings.SUPPLIER_API_URL)
    try:
        yield
    finally:
        await supplier.close()
        if redis_client is not None:
            await redis_client.aclose()


app = FastAPI(
    title=settings.SERVICE_NAME,
    version=settings.SERVICE_VERSION,
    lifespan=lifespan,
)


def get_fetcher(request: Request) -> ResilientFetcher:
    return request.app.state.fetcher


def get_cache(request: Request) -> ResultCache:
    return request.app.state.cache


@app.middleware("http")
async def request_id_middleware(request: Request, call_next) -> Response:
    """Assign or preserve a unique request ID on every request."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    body = StructuredErrorResponse.from_exception(exc, request_id)
    return JSONResponse(status_code=500, content=body.model_dump(), headers={"X-Request-ID": request_id})


@app.get("/health", response_model=HealthResponse)
async def health(
    cache: ResultCache = Depends(get_cache),
    fetcher: ResilientFetcher = Depends(get_fetcher),
) -> HealthResponse:
    """Return service health: identity, uptime, cache reachability and breaker counters."""
    return HealthResponse(
        service=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
        status="healthy",
        uptime_seconds=round(time.monotonic() - _start_time, 2),
        cache="connected" if await cache.ping() else "disconnected",
        circuit_breaker=fetcher.breaker.metrics(),
    )


@app.get("/api/external/supplier-products")
async def get_supplier_products(
    deadline_ms: float | None = Query(default=None, gt=0),
    fetcher: ResilientFetcher = Depends(get_fetcher),
) -> JSONResponse:
    """Serve supplier products: 200 for live or cached data, 503 when both fail."""
    result = await fetcher.fetch_supplier_data(deadline_ms=deadline_ms)
    return JSONResponse(
        status_code=200 if result.success else 503,
        content=result.model_dump(mode="json", by_alias=True),
        headers={CIRCUIT_STATE_HEADER: result.circuit_breaker_state.state},
    )


@app.get("/api/external/status", response_model=StatusResponse)
async def get_status(fetcher: ResilientFetcher = Depends(get_fetcher)) -> StatusResponse:
    """Return the circuit breaker snapshot without touching the upstream."""
    return StatusResponse(data=fetcher.get_circuit_status())


def run() -> None:
    """Console entrypoint: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
