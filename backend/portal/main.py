from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
import logging
import time

from portal.core.config import settings
from portal.core.errors import PortalError, RateLimitExceeded, error_log, user_message
from portal.api.v1.router import api_router
from portal.realtime.gateway import socket_app, change_notifier
from portal.services.storage_service import storage_service

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Prometheus metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)
REQUEST_DURATION = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint']
)
ERROR_COUNT = Counter(
    'portal_errors_total',
    'Errors translated to HTTP responses',
    ['code']
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    try:
        await storage_service.ensure_bucket()
    except Exception as e:
        logger.warning("Object storage not reachable at startup: %s", e)
    yield
    # Shutdown
    await change_notifier.flush()


app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Access-Token", "X-Refresh-Token"],
)


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    route = request.scope.get("route")
    endpoint = getattr(route, "path", "unmatched")
    REQUEST_COUNT.labels(request.method, endpoint, response.status_code).inc()
    REQUEST_DURATION.labels(request.method, endpoint).observe(time.perf_counter() - started)
    return response


@app.exception_handler(PortalError)
async def portal_error_handler(request: Request, exc: PortalError):
    ERROR_COUNT.labels(exc.code).inc()
    if exc.status_code >= 500:
        error_log.record(exc, context=request.url.path)
    headers = None
    if isinstance(exc, RateLimitExceeded):
        headers = {"Retry-After": str(max(1, int(exc.reset_at.timestamp() - time.time())))}
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": user_message(exc), "code": exc.code},
        headers=headers,
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    ERROR_COUNT.labels("INTERNAL_ERROR").inc()
    error_log.record(exc, context=request.url.path)
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "detail": user_message(exc),
            "code": "INTERNAL_ERROR",
            "actions": ["retry", "home", "report"],
        },
    )


app.include_router(api_router, prefix=settings.API_V1_PREFIX)

# Mount Socket.IO
app.mount("/socket.io", socket_app)


@app.get("/health")
async def health_check():
    return {"status": "healthy", "version": settings.VERSION}


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
