"""
STK Pay Backend - Application Factory

Initiates M-Pesa STK push payments through Safaricom Daraja, reconciles the
asynchronous callbacks and serves status polling for the frontend.
create_app() builds a fresh application with its own services; importing
this module constructs nothing.
"""
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional
import logging
import time

import httpx

from .config import Settings, get_settings
from .dependencies import build_services
from .exceptions import StkPayError
from .api.payments import router as payments_router
from .api.transactions import router as transactions_router

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    - Startup: warn about missing gateway settings, start the pending poller
    - Shutdown: stop the poller, close the gateway HTTP client
    """
    services = app.state.services
    settings = services.settings

    logger.info("Starting STK Pay backend server...")
    logger.info(f"Demo mode: {settings.demo_mode}")
    logger.info(f"Amount mode: {settings.amount_mode}")

    missing = settings.missing_gateway_settings()
    if missing:
        logger.warning(
            f"Warning: expected environment variables are missing: {', '.join(missing)}"
        )

    if services.poller is not None:
        try:
            services.poller.start()
        except Exception as e:
            logger.error(f"Failed to start pending status poller: {e}")
            logger.warning("Continuing without pending status poller")

    logger.info("Server startup complete")

    yield

    logger.info("Shutting down STK Pay backend server...")
    await services.aclose()


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> FastAPI:
    """
    Build the FastAPI application and its singleton services.

    Args:
        settings: Settings to use (defaults to environment)
        transport: Optional httpx transport for the Daraja client
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="STK Pay API",
        description="M-Pesa STK push initiation, callback reconciliation and status polling",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.services = build_services(settings, transport)
    app.state.started_at = time.monotonic()

    # CORS allow-list for the frontend origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.exception_handler(StkPayError)
    async def stkpay_error_handler(request: Request, exc: StkPayError):
        """
        Handle service errors with the standard {error, message, details} body.
        """
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(f"{exc.error_code} on {request.url.path}: {exc.message}", extra={"details": exc.details})

        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        """
        Malformed request bodies/queries are client errors, reported as 400.
        """
        logger.warning(f"Validation error on {request.url.path}: {exc.errors()}")

        return JSONResponse(
            status_code=400,
            content={
                "error": "invalid_input",
                "message": "Invalid request",
                "details": {"errors": [
                    {"loc": list(err.get("loc", ())), "msg": err.get("msg")}
                    for err in exc.errors()
                ]}
            }
        )

    @app.exception_handler(Exception)
    async def general_error_handler(request: Request, exc: Exception):
        """
        Catch-all handler for unexpected errors.

        Logs the full exception; the failure stays confined to this request.
        """
        logger.error(f"Unexpected error: {str(exc)}", exc_info=True)

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_error",
                "message": "An unexpected error occurred",
                "details": {"error_type": type(exc).__name__} if settings.demo_mode else {}
            }
        )

    @app.get("/health")
    async def health_check():
        """
        Health check endpoint for monitoring and load balancers.
        """
        return {
            "status": "ok",
            "version": VERSION,
            "uptime": round(time.monotonic() - app.state.started_at, 3),
            "time": datetime.now(timezone.utc).isoformat(),
            "demo_mode": settings.demo_mode,
        }

    app.include_router(payments_router, tags=["Payments"])
    app.include_router(transactions_router, tags=["Transactions"])

    return app

