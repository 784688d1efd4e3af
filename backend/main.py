from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import os
import time
import structlog
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

# Structured logging configuration
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.JSONRenderer()
    ],
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger("banking_admin")

from api import admin, chat, dashboard, kyc, messages, presence
from core.access_control import AccessDenied
from core.rate_limiting import limiter
from database import get_service_client, has_service_role, is_configured
from models import USERS

VERSION = "1.0.0"

REQUEST_COUNT = Counter(
    "http_requests_total", "HTTP requests", ["method", "path", "status"]
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds", "HTTP request latency", ["method", "path"]
)

app = FastAPI(
    title="Banking Admin API",
    version=VERSION,
    description="Client dashboard and hierarchical admin panel over Supabase"
)

# Add rate limiter to app state
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(AccessDenied)
async def access_denied_handler(request: Request, exc: AccessDenied):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


# Production CORS configuration
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)

# Request logging middleware
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()

    response = await call_next(request)

    duration = time.time() - start_time
    route = request.scope.get("route")
    path_template = getattr(route, "path", request.url.path)
    REQUEST_COUNT.labels(request.method, path_template, response.status_code).inc()
    REQUEST_LATENCY.labels(request.method, path_template).observe(duration)
    logger.info(
        "http_request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(duration * 1000, 2),
        client_ip=get_remote_address(request)
    )

    return response

app.include_router(admin.router)
app.include_router(kyc.router)
app.include_router(kyc.admin_router)
app.include_router(messages.router)
app.include_router(messages.admin_router)
app.include_router(chat.router)
app.include_router(chat.admin_router)
app.include_router(presence.router)
app.include_router(presence.admin_router)
app.include_router(dashboard.router)


@app.get("/")
async def root():
    return {"message": "Banking Admin API is running", "version": VERSION}

@app.get("/health")
def health_check(response: Response):
    """
    Health check endpoint

    Checks:
    1. Redis (rate limit storage), when REDIS_URL is set
    2. Supabase configuration and a one-row read through the service client

    Returns:
        {
            "status": "healthy" | "degraded" | "unhealthy",
            "checks": {"redis": {...}, "supabase": {...}}
        }
    """
    import redis

    checks = {}
    overall_status = "healthy"

    # 1. Redis
    redis_url = os.getenv("REDIS_URL")
    if redis_url:
        try:
            r = redis.from_url(redis_url, socket_connect_timeout=5)
            r.ping()
            checks["redis"] = {
                "status": "healthy",
                "message": "Connected to Redis",
                "url": redis_url.split("@")[1] if "@" in redis_url else "localhost"
            }
        except Exception as e:
            checks["redis"] = {
                "status": "unhealthy",
                "message": f"Redis connection failed: {str(e)}"
            }
            overall_status = "unhealthy"
    else:
        checks["redis"] = {
            "status": "warning",
            "message": "Redis URL not configured, rate limits are per process"
        }

    # 2. Supabase
    if not is_configured():
        checks["supabase"] = {
            "status": "warning",
            "message": "Supabase not configured"
        }
        if overall_status == "healthy":
            overall_status = "degraded"
    elif not has_service_role():
        checks["supabase"] = {
            "status": "warning",
            "message": "Supabase configured without a service role key, check skipped"
        }
    else:
        try:
            get_service_client().table(USERS).select("id").limit(1).execute()
            checks["supabase"] = {
                "status": "healthy",
                "message": "Supabase reachable",
                "url": os.getenv("SUPABASE_URL")
            }
        except Exception as e:
            checks["supabase"] = {
                "status": "unhealthy",
                "message": f"Supabase check failed: {str(e)}"
            }
            overall_status = "unhealthy"

    if overall_status == "unhealthy":
        response.status_code = 503

    logger.info(
        "health_check_completed",
        status=overall_status,
        redis=checks["redis"]["status"],
        supabase=checks["supabase"]["status"]
    )

    return {
        "status": overall_status,
        "service": "banking-admin",
        "version": VERSION,
        "environment": os.getenv("ENVIRONMENT", "development"),
        "checks": checks
    }

# Prometheus metrics endpoint
@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint for monitoring"""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
