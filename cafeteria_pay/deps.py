from fastapi import Request

from .config import Settings
from .psp import PSPDispatcher
from .services.order_store import OrderStore
from .services.selection_ledger import PriceTable
from .services.status_normalizer import StatusNormalizer
from .services.webhook_reconciler import WebhookReconciler


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_dispatcher(request: Request) -> PSPDispatcher:
    return request.app.state.dispatcher


def get_order_store(request: Request) -> OrderStore:
    return request.app.state.order_store


def get_normalizer(request: Request) -> StatusNormalizer:
    return request.app.state.normalizer


def get_reconciler(request: Request) -> WebhookReconciler:
    return request.app.state.reconciler


def get_price_table(request: Request) -> PriceTable:
    return request.app.state.price_table
