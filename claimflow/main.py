"""claimflow application entry point.

Quick Start:
    $ claimflow serve          # Start the server
    $ claimflow init-db        # Create tables

Environment:
    CLAIMFLOW_ENV              # development/production (default: development)
    CLAIMFLOW_LOG_LEVEL        # DEBUG/INFO/WARNING/ERROR (default: INFO)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import socketio
import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from claimflow import __version__
from claimflow.api.routes import Services, error_response, router, set_services
from claimflow.config import Settings, get_settings
from claimflow.database import close_db, get_session_factory, init_db
from claimflow.errors import ClaimflowError
from claimflow.logging_config import get_logger, setup_logging
from claimflow.modules.claims.repository import ClaimRepository, UserRepository
from claimflow.modules.claims.service import WorkflowEngine
from claimflow.modules.notifications.admin_mail import AdminEmailNotifier
from claimflow.modules.notifications.bus import ADMIN_CHANNEL, NotificationBus
from claimflow.modules.receipts.ocr import OcrExtractor
from claimflow.modules.receipts.store import LocalReceiptStore
from claimflow.realtime.websocket import ClaimEventsSocket, create_server

setup_logging()
logger = get_logger(__name__)

_settings = get_settings()
sio = create_server(_settings.allowed_origins)
_bus: Optional[NotificationBus] = None
_socket: Optional[ClaimEventsSocket] = None


def build_services(settings: Settings, notification_bus: NotificationBus, session_factory=None) -> Services:
    """Wire repositories, the workflow engine and the receipt pipeline."""
    factory = session_factory or get_session_factory()
    workflow = WorkflowEngine(ClaimRepository(factory), notification_bus)
    receipts = LocalReceiptStore(settings.uploads_path)
    ocr = OcrExtractor(
        timeout=settings.ocr_timeout_seconds,
        language=settings.ocr_language,
        tesseract_cmd=settings.tesseract_cmd,
        max_workers=settings.ocr_max_workers,
    )
    if settings.smtp_configured:
        notification_bus.subscribe(ADMIN_CHANNEL, AdminEmailNotifier(UserRepository(factory), settings))
    return Services(workflow=workflow, receipts=receipts, ocr=ocr)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    global _bus, _socket
    settings = get_settings()
    logger.info("claimflow_starting", version=__version__, env=settings.claimflow_env)

    await init_db()
    _bus = NotificationBus(delivery_timeout=settings.notification_timeout_seconds)
    services = build_services(settings, _bus)
    set_services(services)
    _socket = ClaimEventsSocket(sio, _bus)

    logger.info("claimflow_ready", version=__version__, smtp=settings.smtp_configured)

    yield

    logger.info("claimflow_shutting_down")
    await _bus.close()
    services.ocr.shutdown()
    set_services(None)
    try:
        await close_db()
    except Exception as exc:
        logger.warning("db_close_error", error=str(exc))
    logger.info("claimflow_stopped")


_fastapi_app = FastAPI(
    title="claimflow",
    description="Expense claim submission, OCR and approval workflow",
    version=__version__,
    lifespan=lifespan,
)

_fastapi_app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@_fastapi_app.exception_handler(ClaimflowError)
async def claimflow_error_handler(request: Request, exc: ClaimflowError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_failed", path=request.url.path, error=exc.message)
    return error_response(exc)


@_fastapi_app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"field": ".".join(str(p) for p in err["loc"][1:]), "msg": err["msg"]}
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"error": "Invalid request", "errors": errors})


_fastapi_app.include_router(router, prefix="/api")

# Socket.IO handles WebSocket at /socket.io/, everything else goes to FastAPI
app = socketio.ASGIApp(sio, other_asgi_app=_fastapi_app)


def main() -> None:
    """Run the server."""
    settings = get_settings()
    uvicorn.run(
        "claimflow.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.claimflow_env == "development",
        log_level=settings.claimflow_log_level.lower(),
    )


if __name__ == "__main__":
    main()
