"""Shared builders for the test suite."""
import json
from datetime import datetime, timezone

import httpx

from cafeteria_pay.config import Settings
from cafeteria_pay.db import Base, create_db_engine, create_session_factory
from cafeteria_pay.services.order_store import Order, OrderStore
from cafeteria_pay.services.status_normalizer import OrderStatus

FIXED_NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)
FIXED_NONCE = bytes(range(16))


def make_settings(**overrides) -> Settings:
    values = {
        "ENVIRONMENT": "test",
        "DATABASE_URL": "sqlite://",
        "PUBLIC_BASE_URL": "https://casino.test/",
        "PAYMENT_PROVIDER": "getnet",
        "GETNET_LOGIN": "casino-login",
        "GETNET_SECRET": "getnet-secret",
        "NETGET_MERCHANT_ID": "merchant-42",
        "NETGET_SECRET_KEY": "netget-secret",
        "ALERT_WEBHOOK_URL": None,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_store(database_url: str = "sqlite://"):
    engine = create_db_engine(database_url)
    Base.metadata.create_all(engine)
    session_factory = create_session_factory(engine)
    return OrderStore(session_factory), session_factory


def seed_order(store: OrderStore, order_id: str = "ord-1", total: int = 27500,
               status: OrderStatus = OrderStatus.PENDING, metadata=None) -> Order:
    store.create(
        Order(
            id=order_id,
            user_id="user-1",
            week_start="2026-10-19",
            total=total,
            metadata=metadata if metadata is not None else {"version": "1.0", "source": "web"},
        )
    )
    if status is OrderStatus.DRAFT:
        return store.get_by_id(order_id)
    return store.update(order_id, {"status": status})


class FakeGateway:
    """Records outbound requests and answers with a canned response."""

    def __init__(self, status_code: int = 200, body=None, raw: str = None, exc: Exception = None):
        self.status_code = status_code
        self.body = body
        self.raw = raw
        self.exc = exc
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.exc is not None:
            raise self.exc
        if self.raw is not None:
            return httpx.Response(self.status_code, text=self.raw)
        return httpx.Response(self.status_code, json=self.body)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))

    def last_json(self):
        return json.loads(self.requests[-1].content)


def getnet_ok(request_id: int = 9876, process_url: str = "https://checkout.test.getnet.cl/session/9876"):
    return {
        "status": {"status": "OK", "reason": "PC", "message": "La petición se ha procesado correctamente"},
        "requestId": request_id,
        "processUrl": process_url,
    }
