"""
Gateway notifications: POST /payment/notify
- Logs every raw delivery in payment_notifications
- Reconciles it against the order (idempotent, monotonic)
- Answers 200 for anything understood, including unknown statuses, so the
  gateway stops retrying; 4xx/5xx only for malformed input or transient failures

The log writes, the reconciliation (database I/O, CAS retries) and the
operator alert POST are blocking; they run in the threadpool so the event
loop keeps serving other requests.
"""
import json
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool

from cafeteria_pay.config import Settings
from cafeteria_pay.deps import get_app_settings, get_reconciler
from cafeteria_pay.errors import PaymentError
from cafeteria_pay.schemas_pkg import NotificationAck, NotifyLiveness
from cafeteria_pay.services.webhook_reconciler import WebhookReconciler
from cafeteria_pay.services.webhook_service import log_notification, update_notification_status

router = APIRouter()


@router.post("/notify", response_model=NotificationAck)
async def payment_notify(request: Request, reconciler: WebhookReconciler = Depends(get_reconciler)):
    body = await request.body()
    try:
        logged_payload = json.loads(body)
    except ValueError:
        logged_payload = {"raw": body.decode("utf-8", errors="replace")}

    session_factory = request.app.state.session_factory
    event_id = await run_in_threadpool(
        log_notification, session_factory, None, dict(request.headers), logged_payload
    )

    try:
        outcome = await run_in_threadpool(reconciler.reconcile, body)
    except PaymentError as e:
        await run_in_threadpool(
            update_notification_status,
            session_factory,
            event_id,
            "rejected" if e.http_status < 500 else "failed",
            order_id=e.details.get("order_id"),
            provider=e.details.get("provider"),
            error=str(e),
        )
        raise

    await run_in_threadpool(
        update_notification_status,
        session_factory,
        event_id,
        "processed",
        order_id=outcome.order_id,
        provider=outcome.provider,
    )
    return outcome.acknowledgement()


@router.get("/notify", response_model=NotifyLiveness)
def payment_notify_liveness(settings: Settings = Depends(get_app_settings)):
    return {
        "status": "ok",
        "service": f"{settings.PAYMENT_PROVIDER}-payment-notification",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.ENVIRONMENT,
    }
