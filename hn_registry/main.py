from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from hn_registry.config import settings
from hn_registry.database import init_db, close_db
from hn_registry.services.errors import (
    RegistrationError,
    InvalidFormatError,
    DuplicateIdentityError,
    SequenceExhaustedError,
)
from hn_registry.schemas.identity import ErrorResponse, IdentitySummaryResponse
from hn_registry.web.registration_routes import router as registration_router
from contextlib import asynccontextmanager
from pathlib import Path

import logging

_log_dir = Path(__file__).parent.parent / "logs"
_log_dir.mkdir(exist_ok=True)

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.FileHandler(_log_dir / "app.log"), logging.StreamHandler()],
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown events"""
    logger.info("[>>] Starting PTHN Registry...")
    init_db()
    logger.info("[OK] Database initialized")
    yield
    logger.info("[<<] Shutting down PTHN Registry...")
    close_db()
    logger.info("[OK] Database connections closed")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    description="Patient hospital number (PTHN) allocation and identity registry",
    version="1.0.0",
    lifespan=lifespan,
)


def _status_for(exc: RegistrationError) -> int:
    if isinstance(exc, InvalidFormatError):
        return 422
    if isinstance(exc, DuplicateIdentityError):
        return 409
    return 503


@app.exception_handler(RegistrationError)
async def registration_exception_handler(request: Request, exc: RegistrationError):
    """Render registration errors as {code, detail} envelopes"""
    body = ErrorResponse(code=exc.code, detail=str(exc))
    headers = {}

    if isinstance(exc, DuplicateIdentityError):
        body.existing = IdentitySummaryResponse.model_validate(exc.existing)
    elif isinstance(exc, SequenceExhaustedError):
        logger.error(f"Registration blocked: {exc}")
    elif exc.retryable:
        headers["Retry-After"] = "1"

    return JSONResponse(
        status_code=_status_for(exc),
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
        headers=headers,
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Log all unhandled exceptions"""
    logger.error(
        "Unhandled exception on %s %s: %s",
        request.method,
        request.url.path,
        str(exc),
        exc_info=True,
    )
    return PlainTextResponse(
        "Internal Server Error. Please contact support if the problem persists.",
        status_code=500,
    )


# Health check endpoint (API only)
@app.get("/api/health")
async def health_check():
    return {"status": "ok"}


app.include_router(registration_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
