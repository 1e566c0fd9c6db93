import sys
import logging
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from vizengine.api.metrics import router as metrics_router
from vizengine.api.routes import limiter, router
from vizengine.core.config import get_settings
from vizengine.core.errors import ErrorCodes, get_error_response
from vizengine.core.logging import configure_logging
from vizengine.core.middleware import CorrelationIDMiddleware, TimeoutMiddleware, install_log_record_factory
from vizengine.services.engine import get_engine

# Load environment variables
load_dotenv()

# Load and validate configuration
try:
    settings = get_settings()
except ValueError as e:
    # Basic logger for startup errors
    logging.basicConfig(level=logging.ERROR)
    logging.getLogger(__name__).error(f"Failed to load configuration: {e}")
    sys.exit(1)

configure_logging(settings.log_level, settings.log_format)
install_log_record_factory()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = get_engine()
    engine.start()
    logger.info("Application started successfully")
    yield
    engine.shutdown()
    logger.info("Application stopped")


app = FastAPI(
    title="Adaptive Visualization Engine API",
    description="Column profiling, semantic classification, hierarchy detection and chart recommendation",
    version="1.0.0",
    lifespan=lifespan,
)

# Store limiter and settings in app state for use in routes
app.state.limiter = limiter
app.state.settings = settings


def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit exceeded with structured error response."""
    correlation_id = getattr(request.state, 'correlation_id', 'unknown')
    error_info = get_error_response(ErrorCodes.RATE_LIMIT_EXCEEDED)
    error_info['correlation_id'] = correlation_id
    return JSONResponse(
        status_code=429,
        content=error_info,
        headers={
            "Retry-After": "60",
            "X-Correlation-ID": correlation_id
        }
    )


app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

# Middleware order: last added runs first
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Correlation-ID"],
    expose_headers=["X-Correlation-ID", "X-Response-Time"]
)
app.add_middleware(TimeoutMiddleware, timeout_seconds=settings.request_timeout_seconds)
app.add_middleware(CorrelationIDMiddleware)

logger.info(f"CORS allowed origins: {settings.allowed_origins_list}")

app.include_router(router, prefix="/api")
app.include_router(metrics_router, prefix="/api")


@app.get("/")
async def root():
    return {"message": "Adaptive Visualization Engine API is running"}
