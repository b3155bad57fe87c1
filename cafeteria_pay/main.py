# cafeteria_pay/main.py
#
#   uvicorn cafeteria_pay.main:create_app --factory

from datetime import datetime, timezone
from typing import Optional

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from cafeteria_pay.config import Settings, get_settings, validate_settings
from cafeteria_pay.db import create_db_engine, create_session_factory
from cafeteria_pay.errors import PaymentError, ValidationError
from cafeteria_pay.logging_config import configure_logging, get_logger
from cafeteria_pay.middleware import request_id_middleware
from cafeteria_pay.psp import PSPDispatcher
from cafeteria_pay.routers import health, notifications, orders, payments
from cafeteria_pay.services.order_store import OrderStore
from cafeteria_pay.services.selection_ledger import PriceTable
from cafeteria_pay.services.status_normalizer import StatusNormalizer
from cafeteria_pay.services.webhook_reconciler import WebhookReconciler

# ---------------------------------------------
# LOAD ENVIRONMENT VARIABLES
# ---------------------------------------------
load_dotenv()

logger = get_logger(__name__)


def _error_body(message: str) -> dict:
    return {"success": False, "error": message, "timestamp": datetime.now(timezone.utc).isoformat()}


async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    log = logger.error if exc.http_status >= 500 else logger.warning
    log(
        "payment_error",
        kind=exc.kind,
        status_code=exc.http_status,
        error=str(exc),
        details={k: v for k, v in exc.details.items() if k != "signature"},
    )
    return JSONResponse(status_code=exc.http_status, content=_error_body(exc.public_message))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("request_validation_error", errors=exc.errors())
    return JSONResponse(status_code=400, content=_error_body(ValidationError.default_message))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_error", exc_info=exc)
    return JSONResponse(status_code=500, content=_error_body("Internal server error"))


def create_app(settings: Optional[Settings] = None, http_client: Optional[httpx.Client] = None) -> FastAPI:
    """
    Build the application around one ``Settings`` instance.

    ``http_client`` is shared by the gateway adapters and the alert sink;
    tests pass one backed by ``httpx.MockTransport``.
    """
    settings = settings or get_settings()
    configure_logging(settings.ENVIRONMENT, settings.DEBUG)
    for issue in validate_settings(settings):
        logger.warning("configuration_issue", issue=issue)

    # ---------------------------------------------
    # APP INIT
    # ---------------------------------------------
    app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION)

    engine = create_db_engine(settings.DATABASE_URL, echo=settings.DEBUG)
    session_factory = create_session_factory(engine)
    store = OrderStore(session_factory)
    dispatcher = PSPDispatcher(settings, http_client=http_client)
    normalizer = StatusNormalizer.from_settings(settings)

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.order_store = store
    app.state.dispatcher = dispatcher
    app.state.normalizer = normalizer
    app.state.price_table = PriceTable.from_settings(settings)
    app.state.reconciler = WebhookReconciler(store, normalizer, dispatcher, settings, alert_client=http_client)

    # ---------------------------------------------
    # MIDDLEWARE & ERRORS
    # ---------------------------------------------
    app.middleware("http")(request_id_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.PUBLIC_BASE_URL],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(PaymentError, payment_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # ---------------------------------------------
    # ROUTERS
    # ---------------------------------------------
    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(payments.router, prefix="/payment", tags=["Payments"])
    app.include_router(notifications.router, prefix="/payment", tags=["Payment Notifications"])
    app.include_router(orders.router, prefix="/orders", tags=["Orders"])

    @app.get("/")
    def root():
        return {"message": f"{settings.APP_NAME} is running"}

    logger.info(
        "app_started",
        environment=settings.ENVIRONMENT,
        provider=settings.PAYMENT_PROVIDER,
        getnet_environment=settings.GETNET_ENVIRONMENT,
        netget_environment=settings.NETGET_ENVIRONMENT,
    )
    return app
