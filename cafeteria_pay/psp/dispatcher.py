"""PSP Adapter Dispatcher - Routes to correct PSP based on configuration."""
from typing import Dict, List, Optional

import httpx

from cafeteria_pay.config import Settings
from cafeteria_pay.errors import ConfigurationError

from .adapter import PSPAdapter, PSPProvider
from .getnet_adapter import GetNetAdapter
from .netget_adapter import NetGetAdapter

_ADAPTER_CLASSES = {
    PSPProvider.GETNET: GetNetAdapter,
    PSPProvider.NETGET: NetGetAdapter,
}


class PSPDispatcher:
    """
    Selects and initializes the correct PSP adapter.
    Credentials come from the ``Settings`` instance it was built with; a missing
    credential surfaces as ``ConfigurationError`` when the adapter is used, so
    notifications for the other gateway keep working.
    """

    def __init__(self, settings: Settings, http_client: Optional[httpx.Client] = None):
        self.settings = settings
        self._http_client = http_client
        self._adapters: Dict[PSPProvider, PSPAdapter] = {}

    def get_adapter(self, provider: Optional[str] = None) -> PSPAdapter:
        """
        Get PSP adapter for the given provider (default: ``PAYMENT_PROVIDER``).

        Raises:
            ConfigurationError: If provider is not supported
        """
        name = (provider or self.settings.PAYMENT_PROVIDER).lower()
        try:
            key = PSPProvider(name)
        except ValueError:
            raise ConfigurationError(f"Unsupported PSP provider: {name}")

        # Return cached adapter if exists
        if key not in self._adapters:
            self._adapters[key] = _ADAPTER_CLASSES[key](self.settings, http_client=self._http_client)
        return self._adapters[key]

    def all_adapters(self) -> List[PSPAdapter]:
        """Every supported adapter, in notification-probing order."""
        return [self.get_adapter(p.value) for p in (PSPProvider.NETGET, PSPProvider.GETNET)]

    def clear_cache(self) -> None:
        """Clear cached adapters (useful for testing)."""
        self._adapters = {}
