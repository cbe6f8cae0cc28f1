"""FastAPI application for the hostel fee ledger."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hostel_ledger.api.monthly_fees import router as monthly_fees_router
from hostel_ledger.config import settings
from hostel_ledger.models import Base
from hostel_ledger.services import SessionLocal, engine
from hostel_ledger.services.errors import LedgerError, error_response
from hostel_ledger.services.ledger_service import LedgerReconciliationService

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and seed payment modes on startup."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        LedgerReconciliationService(db).ensure_default_payment_modes()
    finally:
        db.close()
    logger.info("Database tables initialized")
    yield
    logger.info("Application shutting down")


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """Render a LedgerError as the standard error envelope."""
    return JSONResponse(status_code=exc.http_status, content=error_response(exc))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request validation failures as the standard error envelope."""
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = f"{location}: {first.get('msg', 'invalid request')}" if location else "Invalid request"
    logger.debug("Request validation failed: path=%s errors=%s", request.url.path, exc.errors())
    return JSONResponse(
        status_code=422,
        content={"success": False, "error": message, "code": "invalid_request"},
    )


def create_app() -> FastAPI:
    """Build the application with routers, middleware and error handlers."""
    app = FastAPI(
        title=settings.api_title,
        description="Monthly fee ledger and payment reconciliation",
        version=settings.api_version,
        lifespan=lifespan,
    )

    # Mobile clients call from arbitrary origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(monthly_fees_router)

    @app.get("/health")
    async def health_check() -> dict:
        """Health check endpoint for monitoring."""
        return {"status": "ok"}

    return app


app = create_app()

__all__ = ["app", "create_app"]
