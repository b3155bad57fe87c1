"""GetNet Web Checkout adapter (nonce/seed transaction-key authentication)."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

import httpx

from cafeteria_pay.config import Settings
from cafeteria_pay.errors import ProviderBusinessError

from . import signing
from .adapter import PaymentSessionRequest, PSPAdapter, PSPProvider, SessionHandle, split_name


def _client_ip(ip: Optional[str]) -> str:
    if not ip or ip == "::1":
        return "127.0.0.1"
    return ip.split(",")[0].strip()


class GetNetAdapter(PSPAdapter):
    """GetNet payment gateway adapter."""

    provider = PSPProvider.GETNET

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.Client] = None,
        clock: Optional[Callable[[], datetime]] = None,
        nonce_factory: Optional[Callable[[], bytes]] = None,
    ):
        super().__init__(settings, http_client=http_client, clock=clock)
        self.login = settings.GETNET_LOGIN
        self.secret = settings.GETNET_SECRET
        self.base_url = settings.getnet_base_url
        self._nonce_factory = nonce_factory

    def check_credentials(self) -> None:
        self._require(GETNET_LOGIN=self.login, GETNET_SECRET=self.secret)

    def session_endpoint(self) -> str:
        return f"{self.base_url}/api/session/"

    def auth(self) -> signing.NonceAuth:
        """A fresh ``auth`` block; GetNet rejects reused nonces."""
        nonce_bytes = self._nonce_factory() if self._nonce_factory else None
        return signing.nonce_auth(self.login, self.secret, nonce_bytes=nonce_bytes, now=self.now())

    def build_payload(self, request: PaymentSessionRequest, expires_at: datetime) -> Dict[str, Any]:
        first_name, last_name = split_name(request.display_name)
        return {
            "auth": self.auth().as_payload(),
            "locale": self.settings.LOCALE,
            "buyer": {
                "name": first_name,
                "surname": last_name,
                "email": request.customer_email,
            },
            "payment": {
                "reference": request.order_id,
                "description": request.payment_description,
                "amount": {
                    "currency": self.settings.CURRENCY,
                    "total": request.amount,
                },
            },
            "expiration": expires_at.isoformat(timespec="seconds"),
            "ipAddress": _client_ip(request.ip_address),
            "userAgent": request.user_agent or self.settings.USER_AGENT,
            "returnUrl": self.return_url(request),
            "cancelUrl": self.cancel_url(request),
            "notifyUrl": self.notify_url(request),
        }

    def parse_session_response(
        self, data: Dict[str, Any], request: PaymentSessionRequest, expires_at: datetime
    ) -> SessionHandle:
        status = data.get("status") if isinstance(data.get("status"), dict) else {}
        process_url = data.get("processUrl")
        if status.get("status") == "OK" and process_url:
            request_id = data.get("requestId")
            return SessionHandle(
                provider=self.provider.value,
                redirect_url=process_url,
                request_id=str(request_id) if request_id is not None else None,
                expires_at=expires_at,
                raw=data,
            )
        raise ProviderBusinessError(
            status.get("message") or "Respuesta inesperada del proveedor de pagos",
            provider=self.provider.value,
        )

    def error_message(self, data: Optional[Mapping[str, Any]]) -> Optional[str]:
        if isinstance(data, Mapping) and isinstance(data.get("status"), Mapping):
            message = data["status"].get("message")
            if message:
                return str(message)
        return super().error_message(data)

    def get_session_status(self, request_id: str) -> Dict[str, Any]:
        """Query a Web Checkout session (``POST /api/session/{requestId}``)."""
        self.check_credentials()
        data = self._request(
            "POST",
            f"{self.base_url}/api/session/{request_id}",
            payload={"auth": self.auth().as_payload()},
        )
        status = data.get("status") if isinstance(data.get("status"), dict) else {}
        request_block = data.get("request") if isinstance(data.get("request"), dict) else {}
        payment_block = request_block.get("payment") if isinstance(request_block.get("payment"), dict) else {}
        return {
            "request_id": str(data.get("requestId", request_id)),
            "status": status.get("status"),
            "message": status.get("message"),
            "reference": payment_block.get("reference"),
            "raw": data,
        }

    def recognizes(self, payload: Mapping[str, Any]) -> bool:
        return isinstance(payload.get("status"), Mapping) or "requestId" in payload
