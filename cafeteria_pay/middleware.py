"""
Middleware for request tracking and logging.
"""
import re
import time
import uuid
from typing import Callable, Optional

from fastapi import Request, Response
from structlog.contextvars import bind_contextvars, clear_contextvars

from cafeteria_pay.logging_config import get_logger

logger = get_logger(__name__)

# Gateways and proxies may send their own id; anything else is replaced.
_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,64}$")


def client_ip(request: Request) -> Optional[str]:
    """Originating address behind the load balancer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip") or (request.client.host if request.client else None)


def request_id_for(request: Request) -> str:
    incoming = request.headers.get("X-Request-ID")
    if incoming and _REQUEST_ID.match(incoming):
        return incoming
    return uuid.uuid4().hex


async def request_id_middleware(request: Request, call_next: Callable) -> Response:
    """
    Bind request_id, method, path and client_ip to the structlog context for
    every log line of the request, and echo the id in ``X-Request-ID``.
    """
    request_id = request_id_for(request)

    clear_contextvars()
    bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
        client_ip=client_ip(request),
    )
    request.state.request_id = request_id

    logger.info("request_started")
    started = time.perf_counter()

    try:
        response = await call_next(request)
        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        response.headers["X-Request-ID"] = request_id
        return response
    except Exception as exc:
        logger.error(
            "request_failed",
            exc_info=exc,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        raise
    finally:
        clear_contextvars()
