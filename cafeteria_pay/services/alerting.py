from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)


def send_operator_alert(url: Optional[str], alert: str, record: Dict[str, Any],
                        client: Optional[httpx.Client] = None) -> None:
    """Log an operator alert and, when configured, POST it as JSON; never raise."""
    body = {"alert": alert, "at": datetime.now(timezone.utc).isoformat(), **record}
    logger.warning("operator_alert", **body)
    if not url:
        return
    try:
        if client is not None:
            client.post(url, json=body, timeout=3.0)
        else:
            with httpx.Client(timeout=3.0) as c:
                c.post(url, json=body)
    except Exception as e:
        logger.warning("operator_alert_post_failed", alert=alert, error=str(e))
