from .adapter import PaymentSessionRequest, PSPAdapter, PSPProvider, SessionHandle
from .dispatcher import PSPDispatcher
from .getnet_adapter import GetNetAdapter
from .netget_adapter import NetGetAdapter

__all__ = [
    "PaymentSessionRequest",
    "PSPAdapter",
    "PSPProvider",
    "SessionHandle",
    "PSPDispatcher",
    "GetNetAdapter",
    "NetGetAdapter",
]
