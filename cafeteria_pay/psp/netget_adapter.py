"""NetGet adapter (HMAC-signed flat payloads)."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from cafeteria_pay.errors import ProviderBusinessError

from . import signing
from .adapter import PaymentSessionRequest, PSPAdapter, PSPProvider, SessionHandle


class NetGetAdapter(PSPAdapter):
    """NetGet payment gateway adapter."""

    provider = PSPProvider.NETGET

    @property
    def merchant_id(self) -> Optional[str]:
        return self.settings.NETGET_MERCHANT_ID

    @property
    def secret(self) -> Optional[str]:
        return self.settings.NETGET_SECRET_KEY

    @property
    def api_url(self) -> str:
        return self.settings.netget_api_url

    def check_credentials(self) -> None:
        self._require(NETGET_MERCHANT_ID=self.merchant_id, NETGET_SECRET_KEY=self.secret)

    def session_endpoint(self) -> str:
        return f"{self.api_url}/v1/payments"

    def build_payload(self, request: PaymentSessionRequest, expires_at: datetime) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "merchant_id": self.merchant_id,
            "amount": request.amount,
            "order_id": request.order_id,
            "description": request.payment_description,
            "customer_email": request.customer_email,
            "customer_name": request.display_name,
            "return_url": self.return_url(request),
            "notify_url": self.notify_url(request),
            "currency": self.settings.CURRENCY,
            "environment": self.settings.NETGET_ENVIRONMENT,
            "expires_at": expires_at.isoformat(timespec="seconds"),
        }
        payload["signature"] = signing.sign(payload, self.secret, signing.SignatureScheme.HMAC)
        return payload

    def parse_session_response(
        self, data: Dict[str, Any], request: PaymentSessionRequest, expires_at: datetime
    ) -> SessionHandle:
        if data.get("success") and data.get("payment_url"):
            request_id = data.get("transaction_id") or data.get("payment_id")
            return SessionHandle(
                provider=self.provider.value,
                redirect_url=data["payment_url"],
                request_id=str(request_id) if request_id is not None else None,
                expires_at=expires_at,
                raw=data,
            )
        raise ProviderBusinessError(
            self.error_message(data) or "Error en la respuesta de NetGet",
            provider=self.provider.value,
        )

    def get_session_status(self, request_id: str) -> Dict[str, Any]:
        self.check_credentials()
        query = {"merchant_id": self.merchant_id, "payment_id": request_id}
        query["signature"] = signing.sign(query, self.secret, signing.SignatureScheme.HMAC)
        data = self._request("GET", f"{self.api_url}/v1/payments/{request_id}", params=query)
        return {
            "request_id": str(data.get("transaction_id") or data.get("payment_id") or request_id),
            "status": data.get("status"),
            "message": data.get("message"),
            "reference": data.get("order_id"),
            "raw": data,
        }

    def recognizes(self, payload: Mapping[str, Any]) -> bool:
        if "merchant_id" in payload:
            return True
        # GetNet nests ``status`` and sends ``requestId``; a flat signed payload is ours.
        return (
            signing.SIGNATURE_FIELD in payload
            and not isinstance(payload.get("status"), Mapping)
            and "requestId" not in payload
        )

    def verify_notification(self, payload: Mapping[str, Any]) -> Optional[bool]:
        """NetGet always signs its notifications; an unsigned one is invalid."""
        self._require(NETGET_SECRET_KEY=self.secret)
        return signing.verify(payload, payload.get("signature"), self.secret)
