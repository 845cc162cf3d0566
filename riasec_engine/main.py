import asyncio
import logging
import math
import sys
from contextlib import asynccontextmanager, suppress
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .api.middleware import setup_middleware
from .api.routes import router
from .config import Settings, settings as default_settings
from .core.catalog import load_catalog
from .core.engine import AssessmentEngine
from .core.exceptions import (
    AssessmentError,
    ConfigurationError,
    ConflictError,
    NotFoundError,
    RateLimitError,
    SequenceError,
    ValidationError,
)
from .core.rate_limiter import ParticipantRateLimiter

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Most specific class wins (looked up along the exception's MRO)
ERROR_STATUS_CODES = {
    NotFoundError: 404,
    SequenceError: 409,
    ConflictError: 409,
    ValidationError: 422,
    RateLimitError: 429,
    ConfigurationError: 500,
    AssessmentError: 400,
}


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def status_for(exc: AssessmentError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 500


async def _sweep_periodically(app: FastAPI, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            # Sweeps take the session locks held by request threads, so keep them off the loop
            abandoned = await asyncio.to_thread(app.state.engine.sweep)
            evicted = await asyncio.to_thread(app.state.rate_limiter.sweep)
            if abandoned or evicted:
                logger.info(f"Sweep: {abandoned} sessions abandoned, {evicted} rate-limit entries evicted")
        except Exception:
            logger.error("Background sweep failed", exc_info=True)


def create_app(app_settings: Optional[Settings] = None,
               engine: Optional[AssessmentEngine] = None) -> FastAPI:
    app_settings = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting RIASEC Assessment Engine...")

        try:
            if engine is not None:
                app.state.engine = engine
            else:
                catalog = load_catalog(
                    app_settings.QUESTIONS_FILE,
                    app_settings.NORMS_FILE,
                    app_settings.CAREERS_FILE,
                )
                app.state.engine = AssessmentEngine(catalog, policy=app_settings.engine_policy())

            app.state.rate_limiter = ParticipantRateLimiter(
                max_requests=app_settings.RATE_LIMIT_MAX_REQUESTS,
                window_seconds=app_settings.RATE_LIMIT_WINDOW_SECONDS,
            )
        except ConfigurationError as e:
            for error in e.errors:
                logger.error(f"Configuration error: {error}")
            logger.error(f"Startup failed: {e.message}")
            raise

        sweeper = None
        if app_settings.SWEEP_INTERVAL_SECONDS > 0 and math.isfinite(app_settings.SWEEP_INTERVAL_SECONDS):
            sweeper = asyncio.create_task(
                _sweep_periodically(app, app_settings.SWEEP_INTERVAL_SECONDS)
            )

        logger.info("RIASEC Assessment Engine ready")

        yield

        logger.info("Shutting down...")
        if sweeper is not None:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper

    app = FastAPI(
        title="RIASEC Assessment Engine",
        description="Vocational interest assessment: sessions, scoring and career matching",
        version="1.0.0",
        debug=app_settings.DEBUG,
        lifespan=lifespan,
    )

    setup_middleware(app, app_settings.ALLOWED_ORIGINS)

    app.include_router(router, prefix="/api/v1")

    @app.exception_handler(AssessmentError)
    async def assessment_error_handler(request: Request, exc: AssessmentError):
        status_code = status_for(exc)
        if status_code >= 500:
            logger.error(f"Engine error on {request.url.path}: {exc.message}", exc_info=True)
        else:
            logger.info(f"{exc.kind} on {request.url.path}: {exc.message}")

        content = exc.to_dict()
        content["timestamp"] = datetime.now().isoformat()

        headers = None
        if isinstance(exc, RateLimitError):
            headers = {"Retry-After": str(max(1, math.ceil(exc.retry_after)))}

        return JSONResponse(status_code=status_code, content=content, headers=headers)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unexpected error: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_error",
                "detail": "Internal server error",
                "errors": [],
                "timestamp": datetime.now().isoformat()
            }
        )

    return app


setup_logging(default_settings.LOG_LEVEL, default_settings.LOG_FILE)

app = create_app()
