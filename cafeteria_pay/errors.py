"""
Error taxonomy for payment sessions and notification reconciliation.

Every error that may cross the HTTP boundary derives from ``PaymentError`` and
carries the status code to answer with plus a message that is safe to show to
the payer or the provider. Internal detail goes to the logs only.
"""
from typing import Any, Dict, Optional


class PaymentError(Exception):
    """Base class for errors surfaced by the payment subsystem."""

    http_status = 500
    kind = "payment_error"
    default_message = "Error interno del servidor"

    def __init__(self, message: Optional[str] = None, *, public_message: Optional[str] = None, **details: Any):
        super().__init__(message or self.default_message)
        self.public_message = public_message or self.default_message
        self.details: Dict[str, Any] = details


class ValidationError(PaymentError):
    """Client-caused: missing amount/orderId/email and the like."""

    http_status = 400
    kind = "validation_error"
    default_message = "Datos de pago inválidos"

    def __init__(self, message: str, **details: Any):
        # Validation messages are written for the payer.
        super().__init__(message, public_message=message, **details)


class ConfigurationError(PaymentError):
    """Missing login/secret or inconsistent configuration."""

    http_status = 500
    kind = "configuration_error"
    default_message = "Configuración de pago no disponible"


class ProviderError(PaymentError):
    """Anything that went wrong talking to a gateway."""

    http_status = 502
    kind = "provider_error"
    default_message = "Error del proveedor de pagos"

    def __init__(self, message: Optional[str] = None, *, provider: Optional[str] = None,
                 status_code: Optional[int] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.provider = provider
        self.status_code = status_code


class ProviderTransportError(ProviderError):
    """Network failure, non-JSON body or unavailable endpoint."""

    http_status = 502
    kind = "provider_transport_error"
    default_message = "No se pudo conectar con el proveedor de pagos. Por favor, intenta más tarde."


class ProviderTimeoutError(ProviderTransportError):
    http_status = 504
    kind = "provider_timeout"


class ProviderAuthError(ProviderError):
    """401-class answer from the gateway; a configuration problem, never the payer's."""

    http_status = 500
    kind = "provider_auth_error"
    default_message = "Error de configuración del sistema de pagos"


class ProviderBusinessError(ProviderError):
    """The gateway rejected the request (e.g. malformed payer data)."""

    http_status = 400
    kind = "provider_business_error"
    default_message = "Datos de pago inválidos"

    def __init__(self, message: Optional[str] = None, **kwargs: Any):
        kwargs.setdefault("public_message", message or self.default_message)
        super().__init__(message, **kwargs)


class OrderConflictError(PaymentError):
    http_status = 409
    kind = "order_conflict"
    default_message = "El pedido ya fue procesado"


class NotificationParseError(PaymentError):
    """Malformed JSON or missing reference/status; the provider may retry."""

    http_status = 400
    kind = "notification_parse_error"
    default_message = "Invalid notification"

    def __init__(self, message: str, **details: Any):
        super().__init__(message, public_message=message, **details)


class NotificationSignatureError(PaymentError):
    http_status = 401
    kind = "notification_signature_error"
    default_message = "Invalid signature"


class OrderNotFoundError(PaymentError):
    http_status = 404
    kind = "order_not_found"
    default_message = "Order not found"


class StoreUnavailableError(PaymentError):
    """The order store could not be read or written; safe to retry."""

    http_status = 503
    kind = "store_unavailable"
    default_message = "Order store unavailable"


class ConcurrentUpdateError(StoreUnavailableError):
    """Compare-and-swap on the order version lost the race."""

    kind = "concurrent_update"


class InvariantViolationError(PaymentError):
    """A write would break an order invariant (backwards status, changed total...)."""

    http_status = 409
    kind = "invariant_violation"
    default_message = "Order update rejected"
