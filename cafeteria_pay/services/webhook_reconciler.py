"""
Inbound payment notification reconciliation.

Turns an untrusted provider callback into (at most) one order mutation:

1. parse the raw body as a JSON object
2. identify the provider shape and verify its signature when it signs
3. pull reference / status / payment id out of the payload
4. load the order, normalize the status, compute the mutation
5. write it through ``OrderStore.update`` guarded by the order version,
   re-reading and recomputing when another delivery won the race

Replays of an identical payload are detected through the fingerprints kept in
``metadata.webhookHistory`` and never touch the order again.
"""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Union

import httpx
import structlog

from cafeteria_pay.config import Settings
from cafeteria_pay.errors import (
    ConcurrentUpdateError,
    NotificationParseError,
    NotificationSignatureError,
    OrderNotFoundError,
)
from cafeteria_pay.psp import PSPAdapter, PSPDispatcher

from .alerting import send_operator_alert
from .notification_fields import ExtractedNotification, extract_notification
from .order_store import Order, OrderStore
from .status_normalizer import Normalization, OrderStatus, StatusBucket, StatusNormalizer

logger = structlog.get_logger(__name__)

GENERIC_SHAPE = "generic"
REFRESHED_ON_TRANSITION = ("webhookData", "processedAt")

_PROVIDER_LABELS = {"getnet": "GetNet", "netget": "NetGet"}


@dataclass
class ReconciliationOutcome:
    order_id: str
    status: OrderStatus
    previous_status: OrderStatus
    bucket: StatusBucket
    raw_status: str
    normalized_status: str
    applied: bool
    provider: str
    duplicate: bool = False

    def acknowledgement(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        return {
            "success": True,
            "message": "Notification processed successfully",
            "orderId": self.order_id,
            "status": self.status.value,
            "originalStatus": self.raw_status,
            "normalizedStatus": self.normalized_status,
            "timestamp": (now or datetime.now(timezone.utc)).isoformat(),
        }


def fingerprint(payload: Mapping[str, Any]) -> str:
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_notification(raw_body: Union[bytes, str]) -> Dict[str, Any]:
    if isinstance(raw_body, bytes):
        try:
            raw_body = raw_body.decode("utf-8")
        except UnicodeDecodeError:
            raise NotificationParseError("Invalid JSON")
    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise NotificationParseError("Invalid JSON")
    if not isinstance(payload, dict):
        raise NotificationParseError("Invalid JSON")
    return payload


class WebhookReconciler:
    def __init__(
        self,
        store: OrderStore,
        normalizer: StatusNormalizer,
        dispatcher: PSPDispatcher,
        settings: Settings,
        clock: Optional[Callable[[], datetime]] = None,
        alert_client: Optional[httpx.Client] = None,
    ):
        self.store = store
        self.normalizer = normalizer
        self.dispatcher = dispatcher
        self.settings = settings
        self.max_attempts = max(1, settings.RECONCILE_MAX_ATTEMPTS)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._alert_client = alert_client

    def identify(self, payload: Mapping[str, Any]) -> Optional[PSPAdapter]:
        for adapter in self.dispatcher.all_adapters():
            if adapter.recognizes(payload):
                return adapter
        return None

    def reconcile(self, raw_body: Union[bytes, str, Mapping[str, Any]]) -> ReconciliationOutcome:
        """
        Raises:
            NotificationParseError: malformed JSON, missing reference or status
            NotificationSignatureError: a signed payload that does not verify
            OrderNotFoundError: the referenced order does not exist
            ConcurrentUpdateError / StoreUnavailableError: transient, retryable
        """
        payload = dict(raw_body) if isinstance(raw_body, Mapping) else parse_notification(raw_body)

        # Unsigned shapes (GetNet, generic) are accepted as-is; any flat payload
        # carrying a signature is routed to NetGet and must verify.
        adapter = self.identify(payload)
        provider = adapter.provider.value if adapter else GENERIC_SHAPE
        if adapter is not None and adapter.verify_notification(payload) is False:
            logger.warning("notification_signature_invalid", provider=provider)
            raise NotificationSignatureError("Notification signature mismatch", provider=provider)

        note = extract_notification(payload, shape=provider)
        logger.info(
            "notification_received",
            provider=provider,
            order_id=note.reference,
            raw_status=note.status,
            payment_id=note.payment_id,
            sources=note.sources,
        )
        for name, candidates in note.conflicts.items():
            logger.warning(
                "status_conflict" if name == "status" else "notification_field_conflict",
                provider=provider,
                order_id=note.reference,
                field=name,
                chosen=note.sources.get(name),
                candidates=[{"path": c.path, "value": c.value} for c in candidates],
            )

        if not note.reference:
            logger.warning("notification_rejected", provider=provider, reason="missing_reference", keys=sorted(payload))
            raise NotificationParseError("Missing order reference")
        if not note.status:
            # An unknown order is reported as such even when the status is missing too.
            if self.store.get_by_id(note.reference) is None:
                logger.warning("order_not_found", provider=provider, order_id=note.reference)
                raise OrderNotFoundError(f"Order {note.reference} not found", order_id=note.reference)
            logger.warning(
                "notification_rejected",
                provider=provider,
                order_id=note.reference,
                reason="missing_status",
                keys=sorted(payload),
            )
            raise NotificationParseError("Missing payment status", order_id=note.reference)

        normalization = self.normalizer.normalize(note.status)
        logger.info(
            "status_normalized",
            provider=provider,
            order_id=note.reference,
            raw_status=normalization.raw,
            token=normalization.token,
            bucket=normalization.bucket.value,
        )

        digest = fingerprint(payload)
        for attempt in range(1, self.max_attempts + 1):
            order = self.store.get_by_id(note.reference)
            if order is None:
                logger.warning("order_not_found", provider=provider, order_id=note.reference)
                raise OrderNotFoundError(f"Order {note.reference} not found", order_id=note.reference)
            try:
                return self._apply(order, payload, note, normalization, provider, digest)
            except ConcurrentUpdateError:
                logger.warning(
                    "order_update_conflict",
                    provider=provider,
                    order_id=order.id,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                )

        raise ConcurrentUpdateError(
            f"Order {note.reference} kept changing during reconciliation", order_id=note.reference
        )

    def _apply(
        self,
        order: Order,
        payload: Mapping[str, Any],
        note: ExtractedNotification,
        normalization: Normalization,
        provider: str,
        digest: str,
    ) -> ReconciliationOutcome:
        def outcome(status: OrderStatus, applied: bool, duplicate: bool = False) -> ReconciliationOutcome:
            return ReconciliationOutcome(
                order_id=order.id,
                status=status,
                previous_status=order.status,
                bucket=normalization.bucket,
                raw_status=normalization.raw,
                normalized_status=normalization.token,
                applied=applied,
                provider=provider,
                duplicate=duplicate,
            )

        history = order.metadata.get("webhookHistory")
        if isinstance(history, list) and any(
            isinstance(h, dict) and h.get("fingerprint") == digest for h in history
        ):
            logger.info("order_mutation_skipped", provider=provider, order_id=order.id, reason="duplicate")
            return outcome(order.status, applied=False, duplicate=True)

        now = self._clock()
        target = self.normalizer.decide(order.status, normalization.bucket)
        fields: Dict[str, Any] = {}
        metadata: Dict[str, Any] = {}

        if target is not None:
            fields["status"] = target
            metadata.update(self._status_metadata(payload, note, normalization, provider))
            if target is OrderStatus.PAGADO:
                fields["paid_at"] = now
                if not order.payment_id:
                    fields["payment_id"] = note.payment_id or f"{provider}_payment"
        elif normalization.is_unknown:
            metadata.update(self._status_metadata(payload, note, normalization, provider))

        snapshot = self._snapshot(payload, note, normalization)
        if target is not None or normalization.is_unknown:
            metadata["processedAt"] = now.isoformat()
            metadata["webhookData"] = json.dumps(snapshot, ensure_ascii=False, default=str)

        mismatch = (
            normalization.bucket is StatusBucket.SUCCESS
            and note.amount is not None
            and note.amount != order.total
        )
        if mismatch:
            metadata["amountMismatch"] = [
                {"expected": order.total, "received": note.amount, "at": now.isoformat()}
            ]

        metadata["webhookHistory"] = [
            {
                "fingerprint": digest,
                "receivedAt": now.isoformat(),
                "provider": provider,
                "rawStatus": normalization.raw,
                "bucket": normalization.bucket.value,
                "outcome": target.value if target else "unchanged",
                "snapshot": json.loads(json.dumps(snapshot, default=str)),
            }
        ]
        fields["metadata"] = metadata

        updated = self.store.update(
            order.id,
            fields,
            expected_version=order.version,
            refresh_metadata=REFRESHED_ON_TRANSITION if target is not None else (),
        )

        if target is None:
            logger.info(
                "order_mutation_skipped",
                provider=provider,
                order_id=order.id,
                status=order.status.value,
                bucket=normalization.bucket.value,
                reason="terminal" if order.status.is_terminal else "no_transition",
            )
        if normalization.is_unknown:
            logger.warning(
                "unknown_status_token",
                provider=provider,
                order_id=order.id,
                raw_status=normalization.raw,
                status=order.status.value,
            )
            self._alert("unknown_status_token", order, provider, raw_status=normalization.raw)
        if mismatch:
            logger.warning(
                "amount_mismatch",
                provider=provider,
                order_id=order.id,
                expected=order.total,
                received=note.amount,
            )
            self._alert("amount_mismatch", order, provider, expected=order.total, received=note.amount)

        return outcome(updated.status, applied=target is not None)

    def _status_metadata(
        self,
        payload: Mapping[str, Any],
        note: ExtractedNotification,
        normalization: Normalization,
        provider: str,
    ) -> Dict[str, Any]:
        bucket = normalization.bucket
        if bucket is StatusBucket.SUCCESS:
            evidence = {
                "paymentMethod": payload.get("paymentMethodName")
                or payload.get("franchiseName")
                or _PROVIDER_LABELS.get(provider, provider),
                "authorization": payload.get("authorization") or payload.get("authorization_code"),
                "franchise": payload.get("franchiseName"),
                "bank": payload.get("bankName"),
                "receipt": payload.get("receipt"),
            }
            return {k: v for k, v in evidence.items() if v is not None}
        if bucket is StatusBucket.FAILURE:
            failure = {"failureReason": note.message or "Payment failed"}
            if note.reason is not None:
                failure["failureCode"] = note.reason
            return failure
        if bucket is StatusBucket.PENDING:
            return {"pendingReason": note.message or "Payment processing"}
        unknown = {"unknownStatus": normalization.raw}
        if note.message is not None:
            unknown["unknownMessage"] = note.message
        return unknown

    def _snapshot(
        self, payload: Mapping[str, Any], note: ExtractedNotification, normalization: Normalization
    ) -> Dict[str, Any]:
        snapshot: Dict[str, Any] = {
            "requestId": payload.get("requestId", note.payment_id),
            "status": payload.get("status"),
            "amount": payload.get("amount"),
            "originalStatus": normalization.raw,
        }
        if normalization.is_unknown:
            snapshot["fullNotification"] = dict(payload)
        return snapshot

    def _alert(self, alert: str, order: Order, provider: str, **record: Any) -> None:
        send_operator_alert(
            self.settings.ALERT_WEBHOOK_URL,
            alert,
            {"order_id": order.id, "provider": provider, **record},
            client=self._alert_client,
        )
