import asyncio
import unittest
from unittest import mock

from fastapi.testclient import TestClient

from cafeteria_pay.db import Base
from cafeteria_pay.errors import StoreUnavailableError
from cafeteria_pay.main import create_app
from cafeteria_pay.models import PaymentNotification
from cafeteria_pay.services.status_normalizer import OrderStatus

from support import FakeGateway, getnet_ok, make_settings, seed_order

APPROVED = {
    "reference": "ord-1",
    "requestId": 9876,
    "status": {"status": "APPROVED", "message": "Aprobada"},
    "amount": {"to": {"currency": "CLP", "total": 27500}},
}

CREATE = {"amount": 27500, "orderId": "ord-1", "customerEmail": "a@b.cl"}


class RouteTestCase(unittest.TestCase):
    def setUp(self):
        self.build(FakeGateway(body=getnet_ok()))

    def build(self, gateway, **settings):
        self.gateway = gateway
        self.app = create_app(make_settings(**settings), http_client=gateway.client())
        Base.metadata.create_all(self.app.state.engine)
        self.store = self.app.state.order_store
        self.client = TestClient(self.app)

    def notification_log(self):
        with self.app.state.session_factory() as db:
            return db.query(PaymentNotification).order_by(PaymentNotification.id).all()


class TestCreatePayment(RouteTestCase):
    def test_session_for_pending_order(self):
        seed_order(self.store)
        response = self.client.post("/payment/create", json=CREATE)

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["redirectUrl"], "https://checkout.test.getnet.cl/session/9876")
        self.assertEqual(body["paymentId"], "9876")
        self.assertEqual(body["transactionId"], "9876")

        order = self.store.get_by_id("ord-1")
        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertIsNone(order.payment_id)
        self.assertEqual(order.metadata["sessionProvider"], "getnet")
        self.assertEqual(len(order.metadata["paymentSessions"]), 1)

    def test_draft_order_moves_to_pending(self):
        seed_order(self.store, status=OrderStatus.DRAFT)
        self.assertEqual(self.client.post("/payment/create", json=CREATE).status_code, 200)
        self.assertEqual(self.store.get_by_id("ord-1").status, OrderStatus.PENDING)

    def test_unknown_order_still_gets_a_session(self):
        response = self.client.post("/payment/create", json={**CREATE, "orderId": "ord-x"})
        self.assertEqual(response.status_code, 200)
        self.assertIsNone(self.store.get_by_id("ord-x"))

    def test_paid_order_is_refused(self):
        seed_order(self.store, status=OrderStatus.PAGADO)
        response = self.client.post("/payment/create", json=CREATE)

        self.assertEqual(response.status_code, 409)
        self.assertFalse(response.json()["success"])
        self.assertEqual(self.gateway.requests, [])

    def test_amount_must_match_order_total(self):
        seed_order(self.store, total=5500)
        response = self.client.post("/payment/create", json=CREATE)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "El monto no coincide con el total del pedido")
        self.assertEqual(self.gateway.requests, [])

    def test_missing_fields(self):
        response = self.client.post("/payment/create", json={"orderId": "ord-1"})

        self.assertEqual(response.status_code, 400)
        self.assertIn("Datos incompletos", response.json()["error"])
        self.assertEqual(self.gateway.requests, [])

    def test_malformed_body(self):
        response = self.client.post(
            "/payment/create", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Datos de pago inválidos")

    def test_provider_rejects_credentials(self):
        self.build(FakeGateway(401, body={"status": {"status": "FAILED", "message": "Autenticación fallida"}}))
        response = self.client.post("/payment/create", json=CREATE)

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["error"], "Error de configuración del sistema de pagos")

    def test_provider_business_error(self):
        self.build(FakeGateway(body={"status": {"status": "FAILED", "message": "Datos del comprador inválidos"}}))
        response = self.client.post("/payment/create", json=CREATE)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Datos del comprador inválidos")

    def test_unsupported_provider(self):
        response = self.client.post("/payment/create", json={**CREATE, "provider": "webpay"})
        self.assertEqual(response.status_code, 500)

    def test_forwarded_ip_reaches_gateway(self):
        self.client.post("/payment/create", json=CREATE, headers={"X-Forwarded-For": "200.1.2.3, 10.0.0.1"})
        self.assertEqual(self.gateway.last_json()["ipAddress"], "200.1.2.3")

    def test_get_not_allowed(self):
        response = self.client.get("/payment/create")
        self.assertEqual(response.status_code, 405)
        self.assertEqual(response.json(), {"error": "Método no permitido"})


class TestPaymentStatus(RouteTestCase):
    def test_status_lookup(self):
        self.build(FakeGateway(body={
            "requestId": 9876,
            "status": {"status": "PENDING", "message": "En proceso"},
            "request": {"payment": {"reference": "ord-1"}},
        }))
        response = self.client.get("/payment/status/9876")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["requestId"], "9876")
        self.assertEqual(body["bucket"], "pending")
        self.assertEqual(body["reference"], "ord-1")


class TestNotify(RouteTestCase):
    def test_approved_notification_pays_order(self):
        seed_order(self.store)
        response = self.client.post("/payment/notify", json=APPROVED)

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["message"], "Notification processed successfully")
        self.assertEqual(body["orderId"], "ord-1")
        self.assertEqual(body["status"], "pagado")
        self.assertEqual(body["originalStatus"], "APPROVED")
        self.assertEqual(body["normalizedStatus"], "APPROVED")

        order = self.store.get_by_id("ord-1")
        self.assertEqual(order.status, OrderStatus.PAGADO)
        self.assertEqual(order.payment_id, "9876")

        log = self.notification_log()
        self.assertEqual(len(log), 1)
        self.assertEqual(log[0].status, "processed")
        self.assertEqual(log[0].order_id, "ord-1")
        self.assertEqual(log[0].provider, "getnet")

    def test_repeated_notification_answers_the_same(self):
        seed_order(self.store)
        first = self.client.post("/payment/notify", json=APPROVED)
        second = self.client.post("/payment/notify", json=APPROVED)

        self.assertEqual(second.status_code, 200)
        self.assertEqual(first.json()["status"], second.json()["status"])
        order = self.store.get_by_id("ord-1")
        self.assertEqual(len(order.metadata["webhookHistory"]), 1)
        self.assertEqual(order.version, 2)

    def test_unknown_order(self):
        response = self.client.post("/payment/notify", json={"reference": "ord-404"})

        self.assertEqual(response.status_code, 404)
        self.assertFalse(response.json()["success"])
        self.assertEqual(self.notification_log()[0].status, "rejected")

    def test_malformed_json(self):
        response = self.client.post(
            "/payment/notify", content=b"status=APPROVED", headers={"Content-Type": "text/plain"}
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Invalid JSON")
        self.assertEqual(self.notification_log()[0].payload, {"raw": "status=APPROVED"})

    def test_missing_status(self):
        seed_order(self.store)
        response = self.client.post("/payment/notify", json={"reference": "ord-1"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Missing payment status")

    def test_unknown_status_is_acknowledged(self):
        seed_order(self.store)
        response = self.client.post("/payment/notify", json={"reference": "ord-1", "status": "ON_HOLD"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "pending")
        self.assertEqual(self.store.get_by_id("ord-1").metadata["unknownStatus"], "ON_HOLD")

    def test_unsigned_netget_notification(self):
        seed_order(self.store)
        response = self.client.post(
            "/payment/notify", json={"merchant_id": "merchant-42", "order_id": "ord-1", "status": "PAID"}
        )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(self.store.get_by_id("ord-1").status, OrderStatus.PENDING)

    def test_authorization_header_not_logged(self):
        seed_order(self.store)
        self.client.post("/payment/notify", json=APPROVED, headers={"Authorization": "Bearer x"})
        headers = {k.lower() for k in self.notification_log()[0].headers}
        self.assertNotIn("authorization", headers)

    def test_liveness(self):
        response = self.client.get("/payment/notify")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["service"], "getnet-payment-notification")
        self.assertEqual(body["environment"], "test")


class TestOrderRoutes(RouteTestCase):
    DRAFT = {
        "userId": "user-1",
        "userType": "apoderado",
        "weekStart": "2026-10-19",
        "weekDays": ["2026-10-19", "2026-10-20", "2026-10-21", "2026-10-22", "2026-10-23"],
        "selections": [
            {
                "date": day,
                "dependent": {"id": "dep-1", "name": "Sofía", "curso": "3°B"},
                "almuerzo": {"code": "A1", "name": "Pollo arvejado", "price": 1},
            }
            for day in ["2026-10-19", "2026-10-20", "2026-10-21", "2026-10-22", "2026-10-23"]
        ],
    }

    def test_summary_ignores_client_prices(self):
        response = self.client.post("/orders/summary", json=self.DRAFT)

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["summary"]["total"], 27500)
        self.assertTrue(body["validation"]["canProceedToPayment"])

    def test_create_then_pay(self):
        created = self.client.post("/orders", json=self.DRAFT)
        self.assertEqual(created.status_code, 201)
        order_id = created.json()["orderId"]
        self.assertEqual(created.json()["total"], 27500)
        self.assertEqual(created.json()["status"], "draft")

        response = self.client.post("/payment/create", json={**CREATE, "orderId": order_id})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.store.get_by_id(order_id).status, OrderStatus.PENDING)

        notified = self.client.post("/payment/notify", json={**APPROVED, "reference": order_id})
        self.assertEqual(notified.json()["status"], "pagado")

    def test_empty_order_rejected(self):
        response = self.client.post("/orders", json={**self.DRAFT, "selections": []})
        self.assertEqual(response.status_code, 400)
        self.assertIsNone(response.json().get("orderId"))

    def test_invalid_user_type(self):
        response = self.client.post("/orders/summary", json={**self.DRAFT, "userType": "alumno"})
        self.assertEqual(response.status_code, 400)


class TestHealth(RouteTestCase):
    def test_health(self):
        body = self.client.get("/health").json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["provider"], "getnet")


def event_loop_running():
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class LoopAwareGateway(FakeGateway):
    """Also records whether each outbound call ran on the event loop thread."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.on_event_loop = []

    def __call__(self, request):
        self.on_event_loop.append(event_loop_running())
        return super().__call__(request)


class TestNotifyFailures(RouteTestCase):
    ALERT_URL = "https://alerts.casino.test/hook"

    def test_store_outage_answers_503_and_logs_failure(self):
        seed_order(self.store)
        failure = StoreUnavailableError("Could not read order ord-1", order_id="ord-1")
        with mock.patch.object(self.store, "get_by_id", side_effect=failure):
            response = self.client.post("/payment/notify", json=APPROVED)

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["error"], "Order store unavailable")

        log = self.notification_log()[0]
        self.assertEqual(log.status, "failed")
        self.assertEqual(log.order_id, "ord-1")
        self.assertIn("Could not read order", log.error)
        self.assertEqual(self.store.get_by_id("ord-1").status, OrderStatus.PENDING)

    def test_unknown_status_alert_posted(self):
        self.build(LoopAwareGateway(body={"ok": True}), ALERT_WEBHOOK_URL=self.ALERT_URL)
        seed_order(self.store)
        response = self.client.post("/payment/notify", json={"reference": "ord-1", "status": "ON_HOLD"})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(str(self.gateway.requests[0].url), self.ALERT_URL)
        alert = self.gateway.last_json()
        self.assertEqual(alert["alert"], "unknown_status_token")
        self.assertEqual(alert["order_id"], "ord-1")
        self.assertEqual(alert["raw_status"], "ON_HOLD")

    def test_amount_mismatch_alert_posted(self):
        self.build(LoopAwareGateway(body={"ok": True}), ALERT_WEBHOOK_URL=self.ALERT_URL)
        seed_order(self.store, total=5500)
        response = self.client.post("/payment/notify", json=APPROVED)

        self.assertEqual(response.json()["status"], "pagado")
        alert = self.gateway.last_json()
        self.assertEqual(alert["alert"], "amount_mismatch")
        self.assertEqual(alert["order_id"], "ord-1")
        self.assertEqual(alert["expected"], 5500)
        self.assertEqual(alert["received"], 27500)

    def test_blocking_work_runs_off_the_event_loop(self):
        self.build(LoopAwareGateway(body={"ok": True}), ALERT_WEBHOOK_URL=self.ALERT_URL)
        seed_order(self.store)

        reads = []
        get_by_id = self.store.get_by_id

        def recording_get_by_id(order_id):
            reads.append(event_loop_running())
            return get_by_id(order_id)

        with mock.patch.object(self.store, "get_by_id", side_effect=recording_get_by_id):
            response = self.client.post("/payment/notify", json={"reference": "ord-1", "status": "ON_HOLD"})

        self.assertEqual(response.status_code, 200)
        self.assertTrue(reads)
        self.assertEqual(set(reads), {False})
        self.assertEqual(self.gateway.on_event_loop, [False])


class TestRequestId(RouteTestCase):
    def test_incoming_id_echoed(self):
        response = self.client.get("/health", headers={"X-Request-ID": "getnet-req.42"})
        self.assertEqual(response.headers["X-Request-ID"], "getnet-req.42")

    def test_generated_when_missing_or_malformed(self):
        generated = self.client.get("/health").headers["X-Request-ID"]
        self.assertEqual(len(generated), 32)

        replaced = self.client.get("/health", headers={"X-Request-ID": "x" * 200}).headers["X-Request-ID"]
        self.assertNotEqual(replaced, "x" * 200)


if __name__ == "__main__":
    unittest.main()
