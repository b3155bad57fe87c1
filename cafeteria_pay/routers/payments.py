"""
Payment sessions: POST /payment/create, GET /payment/status/{request_id}

- Validates the payer data before anything is sent to the gateway
- Refuses sessions for settled orders and amounts that differ from the order total
- Never writes the gateway id to the order; only a notification settles it
"""
from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from cafeteria_pay.deps import get_dispatcher, get_normalizer, get_order_store
from cafeteria_pay.errors import OrderConflictError, PaymentError, ValidationError
from cafeteria_pay.middleware import client_ip
from cafeteria_pay.psp import PaymentSessionRequest, PSPDispatcher, SessionHandle
from cafeteria_pay.schemas_pkg import PaymentCreateRequest, PaymentCreateResponse, PaymentStatusResponse
from cafeteria_pay.services.order_store import Order, OrderStore
from cafeteria_pay.services.status_normalizer import OrderStatus, StatusNormalizer

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/create", response_model=PaymentCreateResponse)
def create_payment(
    payload: PaymentCreateRequest,
    request: Request,
    dispatcher: PSPDispatcher = Depends(get_dispatcher),
    store: OrderStore = Depends(get_order_store),
):
    """
    Create a hosted checkout session with the configured gateway.
    """
    session_request = PaymentSessionRequest(
        amount=payload.amount,
        order_id=payload.order_id,
        customer_email=payload.customer_email,
        customer_name=payload.customer_name,
        description=payload.description,
        return_url=payload.return_url,
        notify_url=payload.notify_url,
        cancel_url=payload.cancel_url,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    # 1. Payer data (no outbound call on failure)
    session_request.validate()
    adapter = dispatcher.get_adapter(payload.provider)

    # 2. Order consistency, when the order is known
    order = store.get_by_id(session_request.order_id)
    if order is not None:
        if order.status.is_terminal:
            raise OrderConflictError(
                f"Order {order.id} is already {order.status.value}",
                order_id=order.id,
                status=order.status.value,
            )
        if order.total != session_request.amount:
            raise ValidationError(
                "El monto no coincide con el total del pedido",
                order_id=order.id,
                expected=order.total,
                received=session_request.amount,
            )
    else:
        logger.info("session_for_unknown_order", order_id=session_request.order_id)

    # 3. Gateway session
    try:
        handle = adapter.create_session(session_request)
    except PaymentError as e:
        logger.error(
            "session_failed",
            provider=adapter.provider.value,
            order_id=session_request.order_id,
            kind=e.kind,
            error=str(e),
        )
        raise

    # 4. Mark the order as awaiting payment
    if order is not None:
        _mark_pending(store, order, handle)

    return PaymentCreateResponse(
        success=True,
        payment_id=handle.request_id,
        redirect_url=handle.redirect_url,
        transaction_id=handle.request_id,
    )


def _mark_pending(store: OrderStore, order: Order, handle: SessionHandle) -> None:
    fields = {
        "metadata": {
            "sessionProvider": handle.provider,
            "sessionCreatedAt": datetime.now(timezone.utc).isoformat(),
            "paymentSessions": [
                {
                    "provider": handle.provider,
                    "createdAt": datetime.now(timezone.utc).isoformat(),
                    "expiresAt": handle.expires_at.isoformat(),
                }
            ],
        }
    }
    if order.status is OrderStatus.DRAFT:
        fields["status"] = OrderStatus.PENDING
    try:
        store.update(order.id, fields, expected_version=order.version)
    except PaymentError as e:
        # A notification may already have moved the order; the session stands.
        logger.warning(
            "session_order_update_skipped",
            provider=handle.provider,
            order_id=order.id,
            kind=e.kind,
            error=str(e),
        )


@router.get("/create")
def create_payment_method_not_allowed():
    return JSONResponse(status_code=405, content={"error": "Método no permitido"})


@router.get("/status/{request_id}", response_model=PaymentStatusResponse)
def payment_status(
    request_id: str,
    provider: Optional[str] = None,
    dispatcher: PSPDispatcher = Depends(get_dispatcher),
    normalizer: StatusNormalizer = Depends(get_normalizer),
):
    """
    Ask the gateway for the current state of a checkout session.
    """
    adapter = dispatcher.get_adapter(provider)
    result = adapter.get_session_status(request_id)
    normalization = normalizer.normalize(result.get("status"))
    logger.info(
        "session_status_checked",
        provider=adapter.provider.value,
        request_id=request_id,
        order_id=result.get("reference"),
        raw_status=result.get("status"),
        bucket=normalization.bucket.value,
    )
    return PaymentStatusResponse(
        provider=adapter.provider.value,
        request_id=result["request_id"],
        status=result.get("status"),
        bucket=normalization.bucket.value,
        message=result.get("message"),
        reference=result.get("reference"),
    )
