import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from docsense import __version__
from docsense.api.v1.process import get_gateway
from docsense.api.v1.router import api_v1_router
from docsense.core.config import settings, validate_settings_for_production
from docsense.core.logging import setup_logging
from docsense.core.metrics import PrometheusMiddleware, metrics_response
from docsense.core.rate_limit import limiter
from docsense.gateway.errors import ErrorKind, InvocationError, UnparsableOutputError
from docsense.gateway.gateway import AIGateway

# Configure logging before anything else
setup_logging()

logger = logging.getLogger(__name__)

# HTTP status returned to our callers for each gateway failure kind
ERROR_STATUS: dict[ErrorKind, int] = {
    ErrorKind.CONFIG: 503,
    ErrorKind.TRANSPORT: 504,
    ErrorKind.RATE_LIMIT: 503,
    ErrorKind.UPSTREAM_SERVER: 502,
    ErrorKind.UPSTREAM_CLIENT: 502,
    ErrorKind.EMPTY_OUTPUT: 502,
    ErrorKind.UNPARSABLE_OUTPUT: 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    validate_settings_for_production()
    app.state.gateway = AIGateway.from_settings(settings)
    if not settings.llm_api_key:
        logger.warning("LLM_API_KEY not set, extraction calls will fail until configured")
    logger.info("Starting DocSense (model=%s, concurrency=%d)", settings.llm_model, settings.queue_concurrency)

    yield

    # Shutdown
    await app.state.gateway.aclose()
    logger.info("DocSense shut down")


app = FastAPI(
    title="DocSense",
    description="Question-driven structured summaries of uploaded documents",
    version=__version__,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.app_debug else None,
    redoc_url="/api/redoc" if settings.app_debug else None,
)


@app.exception_handler(InvocationError)
async def _invocation_error_handler(request: Request, exc: InvocationError):
    status_code = ERROR_STATUS.get(exc.kind, 502)
    content = {
        "error": "AI extraction failed",
        "kind": exc.kind.value,
        "detail": str(exc),
        "request_id": exc.request_id,
        "status": exc.status,
        "attempts": exc.attempts,
    }
    if isinstance(exc, UnparsableOutputError):
        content["raw_text"] = exc.raw_text
        content["finish_reason"] = exc.finish_reason
    logger.warning("Extraction %s failed: %s (%s)", exc.request_id, exc.kind.value, exc)
    return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(Exception)
async def _unhandled_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled %s on %s %s:\n%s", type(exc).__name__, request.method, request.url.path, "".join(tb))
    return JSONResponse(status_code=500, content={"error": "Server error", "detail": f"{type(exc).__name__}: {exc}"})


# Rate limiter
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Metrics middleware
app.add_middleware(PrometheusMiddleware)

# CORS: parse allowed_origins from settings (comma-separated)
_origins = [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# API routes
app.include_router(api_v1_router)


@app.get("/api/v1/health")
async def health(request: Request):
    gateway = get_gateway(request)
    return {
        "status": "ok",
        "gateway": gateway.get_status(),
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_response()
