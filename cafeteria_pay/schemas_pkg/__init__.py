# cafeteria_pay/schemas_pkg/__init__.py

# Payment session & notification schemas
from .payments import (
    PaymentCreateRequest,
    PaymentCreateResponse,
    PaymentStatusResponse,
    NotificationAck,
    NotifyLiveness,
)

# Order drafting schemas
from .orders import (
    MenuItemIn,
    DependentIn,
    SelectionIn,
    OrderDraftRequest,
    OrderSummaryResponse,
    OrderCreatedResponse,
)

__all__ = [
    # Payments
    "PaymentCreateRequest",
    "PaymentCreateResponse",
    "PaymentStatusResponse",
    "NotificationAck",
    "NotifyLiveness",

    # Orders
    "MenuItemIn",
    "DependentIn",
    "SelectionIn",
    "OrderDraftRequest",
    "OrderSummaryResponse",
    "OrderCreatedResponse",
]
