from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from cafeteria_pay.models import PaymentNotification

logger = structlog.get_logger(__name__)

# Headers never stored in the notification log.
_REDACTED_HEADERS = {"authorization", "cookie", "x-signature"}


def log_notification(session_factory: sessionmaker, provider: Optional[str], headers: Dict[str, str],
                     payload: Any) -> Optional[int]:
    """
    Log a raw inbound notification. Returns the row id, or None if the log
    could not be written (the notification is still processed).
    """
    clean_headers = {k: v for k, v in headers.items() if k.lower() not in _REDACTED_HEADERS}
    if not isinstance(payload, (dict, list)):
        payload = {"raw": str(payload)}
    try:
        with session_factory() as db:
            event = PaymentNotification(
                provider=provider,
                headers=clean_headers,
                payload=payload,
                status="received",
            )
            db.add(event)
            db.commit()
            return event.id
    except SQLAlchemyError as e:
        logger.error("notification_log_failed", error=str(e))
        return None


def update_notification_status(session_factory: sessionmaker, event_id: Optional[int], status: str,
                               order_id: Optional[str] = None, provider: Optional[str] = None,
                               error: Optional[str] = None) -> None:
    """Mark a logged notification processed / failed / rejected."""
    if event_id is None:
        return
    try:
        with session_factory() as db:
            event = db.get(PaymentNotification, event_id)
            if event:
                event.status = status
                event.processed_at = datetime.now(timezone.utc)
                if order_id:
                    event.order_id = order_id
                if provider:
                    event.provider = provider
                if error:
                    event.error = error
                db.commit()
    except SQLAlchemyError as e:
        logger.error("notification_log_update_failed", event_id=event_id, error=str(e))
