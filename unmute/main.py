"""
Unmute — FastAPI Application Entry Point

The lifespan owns every long-lived resource (DB pool, Redis, vector client,
match-recalculation workers) and keeps them on ``app.state``.  Requests pass
through a timeout guard and a request-context middleware that binds a
request id into structlog's context and counts in-flight requests so that
shutdown can wait for them.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from unmute.config import get_settings
from unmute.database import async_session_factory, engine
from unmute.services.match_queue import MatchRecalculationQueue, redis_lock_factory
from unmute.services.match_scoring_service import make_recalculation_handler
from unmute.services.vector_service import build_vector_client

settings = get_settings()

structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        logging.getLevelName(settings.LOG_LEVEL.upper())
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger("unmute")

SHUTDOWN_DRAIN_SECONDS = 15.0
REQUEST_TIMEOUT_SECONDS = 30.0


class InFlightRequests:
    """Count requests currently being handled."""

    def __init__(self) -> None:
        self.count = 0

    def enter(self) -> None:
        self.count += 1

    def leave(self) -> None:
        self.count -= 1

    async def drain(self, timeout: float, poll_interval: float = 0.25) -> bool:
        """Wait for the count to reach zero.  Returns ``False`` on timeout."""
        deadline = time.monotonic() + timeout
        while self.count > 0:
            if time.monotonic() >= deadline:
                logger.warning("drain_timeout_exceeded", remaining_requests=self.count)
                return False
            await asyncio.sleep(poll_interval)
        return True


in_flight = InFlightRequests()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logger.info("startup_begin", environment=settings.ENVIRONMENT)

    async with engine.begin() as conn:
        await conn.execute(text("SELECT 1"))
    logger.info("database_pool_initialised")

    redis = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=5,
    )
    await redis.ping()
    app.state.redis = redis
    logger.info("redis_connected")

    vector_client = build_vector_client(settings)
    app.state.vector_client = vector_client

    match_queue = MatchRecalculationQueue(
        make_recalculation_handler(async_session_factory, vector_client),
        worker_count=settings.MATCH_WORKER_COUNT,
        max_attempts=settings.MATCH_JOB_MAX_ATTEMPTS,
        retry_wait_seconds=settings.MATCH_JOB_RETRY_WAIT_SECONDS,
        lock_factory=redis_lock_factory(redis, settings.MATCH_LOCK_TIMEOUT_SECONDS),
        status_retention=settings.MATCH_STATUS_RETENTION,
    )
    await match_queue.start()
    app.state.match_queue = match_queue

    logger.info("startup_complete", vector_enabled=vector_client is not None)

    yield

    logger.info("shutdown_begin")
    await in_flight.drain(SHUTDOWN_DRAIN_SECONDS)

    # Queued recalculations may still need Redis and the pool.
    await match_queue.stop(drain_timeout=SHUTDOWN_DRAIN_SECONDS)
    app.state.match_queue = None

    await redis.aclose()
    app.state.redis = None
    await engine.dispose()
    logger.info("shutdown_complete")


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

class TimeoutMiddleware(BaseHTTPMiddleware):
    """Answer 504 when a request runs longer than ``timeout_seconds``."""

    def __init__(self, app, timeout_seconds: float = REQUEST_TIMEOUT_SECONDS) -> None:
        super().__init__(app)
        self.timeout_seconds = timeout_seconds

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("request_timeout", timeout=self.timeout_seconds)
            return JSONResponse(status_code=504, content={"detail": "Request timed out"})


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request id for every log line of a request and log its outcome."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        in_flight.enter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("request_error")
            raise
        finally:
            in_flight.leave()

        response.headers["X-Request-ID"] = request_id
        logger.info(
            "request_handled",
            status=response.status_code,
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return response


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Unmute",
    description="Journaling and peer-support backend",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
)

# Last added runs first: CORS, then timeout, then request context.
app.add_middleware(RequestContextMiddleware)
app.add_middleware(TimeoutMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["health"])
async def health_liveness() -> dict:
    return {"status": "healthy"}


@app.get("/health/deep", tags=["health"])
async def health_deep(request: Request) -> dict:
    """Readiness: database, Redis and the match-recalculation workers."""
    result: dict = {
        "status": "healthy",
        "database": "connected",
        "redis": "connected",
        "match_queue": "running",
    }

    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("health_db_failure", error=str(exc))
        result["database"] = f"error: {exc}"
        result["status"] = "degraded"

    redis = getattr(request.app.state, "redis", None)
    try:
        if redis is None:
            raise RuntimeError("Redis client not initialised")
        await redis.ping()
    except Exception as exc:
        logger.error("health_redis_failure", error=str(exc))
        result["redis"] = f"error: {exc}"
        result["status"] = "degraded"

    queue = getattr(request.app.state, "match_queue", None)
    if queue is None or not queue.running:
        result["match_queue"] = "stopped"
        result["status"] = "degraded"
    else:
        result["match_queue_pending"] = queue.pending_count

    return result


from unmute.api.router import router as api_router  # noqa: E402

app.include_router(api_router, prefix="/api/v1")
