"""
Structured logging configuration using structlog.

Every entry is a JSON object carrying ``app`` and ``environment``; request
scoped fields (``request_id``, ``method``, ``path``, ``client_ip``) arrive
through ``structlog.contextvars`` from the request middleware.
"""
import logging
import sys
from typing import Any, Callable, Dict

import structlog

APP_NAME = "casino-payments"

# Configure standard library logging
logging.basicConfig(
    format="%(message)s",
    stream=sys.stdout,
    level=logging.INFO,
)

Processor = Callable[[Any, str, Dict[str, Any]], Dict[str, Any]]


def app_context(environment: str, app: str = APP_NAME) -> Processor:
    """Processor stamping ``app``/``environment`` unless the call site set them."""

    def add_app_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("app", app)
        event_dict.setdefault("environment", environment)
        return event_dict

    return add_app_context


def configure_logging(environment: str = "development", debug: bool = False) -> None:
    """Configure structlog with processors for one process environment."""
    logging.getLogger().setLevel(logging.DEBUG if debug else logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            app_context(environment),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


# Initialize logging
configure_logging()


def get_logger(name: str = __name__):
    """Get a structured logger instance."""
    return structlog.get_logger(name)
