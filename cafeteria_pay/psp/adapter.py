"""
PSP Adapter Base Class and Interface.
Provides a uniform interface over the checkout gateways (GetNet, NetGet).

Subclasses only describe their wire format: how the payload is built, where it
is sent and how a successful answer looks. Validation, the expiration window,
the bounded-timeout HTTP call and the classification of failures into the
error taxonomy live here so that the gateways cannot drift apart.
"""
from __future__ import annotations

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx
import structlog
from email_validator import EmailNotValidError, validate_email

from cafeteria_pay.config import Settings
from cafeteria_pay.errors import (
    ConfigurationError,
    ProviderAuthError,
    ProviderBusinessError,
    ProviderTimeoutError,
    ProviderTransportError,
    ValidationError,
)

logger = structlog.get_logger(__name__)


class PSPProvider(str, Enum):
    """Supported PSP providers."""
    GETNET = "getnet"
    NETGET = "netget"


@dataclass
class PaymentSessionRequest:
    """
    One checkout attempt for an order. Not persisted.

    ``amount`` is in minor currency units (CLP has no subunits).
    """

    amount: int
    order_id: str
    customer_email: str
    customer_name: Optional[str] = None
    description: Optional[str] = None
    return_url: Optional[str] = None
    notify_url: Optional[str] = None
    cancel_url: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    def validate(self) -> None:
        """Raise ``ValidationError`` before any outbound call is made."""
        missing = []
        if self.amount is None or self.amount == 0:
            missing.append("amount")
        if not self.order_id or not str(self.order_id).strip():
            missing.append("orderId")
        if not self.customer_email:
            missing.append("customerEmail")
        if missing:
            raise ValidationError(
                "Datos incompletos: amount, orderId y customerEmail son requeridos",
                missing=missing,
            )
        if isinstance(self.amount, bool) or not isinstance(self.amount, int) or self.amount < 0:
            raise ValidationError("El monto debe ser un entero positivo", amount=self.amount)
        try:
            validate_email(self.customer_email, check_deliverability=False)
        except EmailNotValidError:
            raise ValidationError("El correo electrónico no es válido", customer_email=self.customer_email)

    @property
    def display_name(self) -> str:
        return customer_display_name(self.customer_name, self.customer_email)

    @property
    def payment_description(self) -> str:
        return self.description or f"Pedido Casino Escolar #{self.order_id}"


@dataclass
class SessionHandle:
    """What the payer needs to continue: where to go and the provider's id."""

    provider: str
    redirect_url: str
    request_id: Optional[str]
    expires_at: datetime
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


def customer_display_name(name: Optional[str], email: Optional[str]) -> str:
    """Use the given name, else derive one from the e-mail local part."""
    if name and name.strip():
        return " ".join(name.split())
    if email and "@" in email:
        local = email.split("@")[0]
        words = [w for w in re.split(r"[._\-\s]+", local) if w]
        if words:
            return " ".join(w[:1].upper() + w[1:].lower() for w in words)
    return "Cliente"


def split_name(full_name: str) -> Tuple[str, str]:
    parts = full_name.split()
    first = parts[0] if parts else "Cliente"
    last = " ".join(parts[1:]) or "Usuario"
    return first, last


def with_query(url: str, **params: str) -> str:
    """Append query parameters, replacing any existing ones with the same name."""
    scheme, netloc, path, query, fragment = urlsplit(url)
    current = [(k, v) for k, v in parse_qsl(query, keep_blank_values=True) if k not in params]
    current.extend(params.items())
    return urlunsplit((scheme, netloc, path, urlencode(current), fragment))


class PSPAdapter(ABC):
    """
    Base adapter for Payment Service Providers.
    All PSP implementations must inherit from this class.
    """

    provider: PSPProvider

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.Client] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize PSP adapter.

        Args:
            settings: process-wide configuration (credentials, URLs, timeouts)
            http_client: optional shared client; a short-lived one is opened per
                call otherwise
            clock: returns the current UTC time, injectable for tests
        """
        self.settings = settings
        self.timeout = settings.PROVIDER_TIMEOUT_SECONDS
        self._client = http_client
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Provider specifics
    # ------------------------------------------------------------------

    @abstractmethod
    def check_credentials(self) -> None:
        """Raise ``ConfigurationError`` if login/secret are missing."""

    @abstractmethod
    def session_endpoint(self) -> str:
        """Absolute URL of the session-creation endpoint."""

    @abstractmethod
    def build_payload(self, request: PaymentSessionRequest, expires_at: datetime) -> Dict[str, Any]:
        """Translate the request into the provider's signed wire payload."""

    @abstractmethod
    def parse_session_response(
        self, data: Dict[str, Any], request: PaymentSessionRequest, expires_at: datetime
    ) -> SessionHandle:
        """Turn a 2xx answer into a handle or raise ``ProviderBusinessError``."""

    @abstractmethod
    def get_session_status(self, request_id: str) -> Dict[str, Any]:
        """
        Ask the provider for the current state of a session.

        Returns:
            Dict with at least: {"request_id": str, "status": str, ...}
        """

    @abstractmethod
    def recognizes(self, payload: Mapping[str, Any]) -> bool:
        """True if a notification payload has this provider's shape."""

    def verify_notification(self, payload: Mapping[str, Any]) -> Optional[bool]:
        """
        Verify an inbound notification.

        Returns None when the provider does not sign its notifications.
        """
        return None

    def error_message(self, data: Optional[Mapping[str, Any]]) -> Optional[str]:
        if not isinstance(data, Mapping):
            return None
        message = data.get("message") or data.get("error")
        return str(message) if message else None

    # ------------------------------------------------------------------
    # Shared flow
    # ------------------------------------------------------------------

    def now(self) -> datetime:
        return self._clock()

    def expiration(self) -> datetime:
        return self.now() + timedelta(minutes=self.settings.SESSION_EXPIRATION_MINUTES)

    def return_url(self, request: PaymentSessionRequest) -> str:
        base = request.return_url or f"{self.settings.PUBLIC_BASE_URL}/payment/return"
        return with_query(base, reference=request.order_id, orderId=request.order_id)

    def cancel_url(self, request: PaymentSessionRequest) -> str:
        base = request.cancel_url or f"{self.settings.PUBLIC_BASE_URL}/mi-pedido"
        return with_query(base, cancelled="true", reference=request.order_id)

    def notify_url(self, request: PaymentSessionRequest) -> str:
        return request.notify_url or f"{self.settings.PUBLIC_BASE_URL}/payment/notify"

    def create_session(self, request: PaymentSessionRequest) -> SessionHandle:
        """
        Create a hosted checkout session.

        Raises:
            ValidationError: bad amount/orderId/email, nothing was sent
            ConfigurationError: credentials missing, nothing was sent
            ProviderTransportError / ProviderTimeoutError: network, non-JSON, 404/5xx
            ProviderAuthError: 401/403 from the provider
            ProviderBusinessError: the provider rejected the request
        """
        request.validate()
        self.check_credentials()

        expires_at = self.expiration()
        payload = self.build_payload(request, expires_at)
        logger.info(
            "session_requested",
            provider=self.provider.value,
            order_id=request.order_id,
            amount=request.amount,
            endpoint=self.session_endpoint(),
            expires_at=expires_at.isoformat(),
        )

        data = self._request("POST", self.session_endpoint(), payload=payload, order_id=request.order_id)
        handle = self.parse_session_response(data, request, expires_at)

        logger.info(
            "session_created",
            provider=self.provider.value,
            order_id=request.order_id,
            request_id=handle.request_id,
            expires_at=expires_at.isoformat(),
        )
        return handle

    def _request(
        self,
        method: str,
        url: str,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        order_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": self.settings.USER_AGENT,
        }
        log = logger.bind(provider=self.provider.value, order_id=order_id, url=url)
        try:
            if self._client is not None:
                response = self._client.request(
                    method, url, json=payload, params=params, headers=headers, timeout=self.timeout
                )
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.request(method, url, json=payload, params=params, headers=headers)
        except httpx.TimeoutException as e:
            log.error("provider_transport_error", reason="timeout", error=str(e))
            raise ProviderTimeoutError(f"Timeout calling {url}", provider=self.provider.value) from e
        except httpx.HTTPError as e:
            log.error("provider_transport_error", reason="transport", error=str(e))
            raise ProviderTransportError(f"Transport error calling {url}: {e}", provider=self.provider.value) from e

        status_code = response.status_code
        try:
            data = response.json()
        except ValueError:
            data = None

        if status_code in (401, 403):
            log.error(
                "provider_auth_error",
                status_code=status_code,
                provider_message=self.error_message(data),
            )
            raise ProviderAuthError(
                f"Authentication rejected by provider ({status_code})",
                provider=self.provider.value,
                status_code=status_code,
            )

        if data is None or not isinstance(data, dict):
            log.error(
                "provider_transport_error",
                reason="non_json_body",
                status_code=status_code,
                body=response.text[:500],
            )
            raise ProviderTransportError(
                f"Error en la respuesta del proveedor de pagos ({status_code})",
                provider=self.provider.value,
                status_code=status_code,
            )

        if status_code in (400, 422):
            message = self.error_message(data) or ProviderBusinessError.default_message
            log.warning("provider_business_error", status_code=status_code, provider_message=message)
            raise ProviderBusinessError(message, provider=self.provider.value, status_code=status_code)

        if status_code >= 400:
            log.error(
                "provider_transport_error",
                reason="http_status",
                status_code=status_code,
                provider_message=self.error_message(data),
            )
            raise ProviderTransportError(
                f"Provider answered {status_code}",
                provider=self.provider.value,
                status_code=status_code,
            )

        return data

    def _require(self, **values: Optional[str]) -> None:
        missing = [name for name, value in values.items() if not value]
        if missing:
            logger.error(
                "configuration_error",
                provider=self.provider.value,
                missing=missing,
                environment=self.settings.ENVIRONMENT,
            )
            raise ConfigurationError(f"{self.provider.value} configuration missing: {', '.join(missing)}")

    def __repr__(self):
        return f"<{self.__class__.__name__}(provider={getattr(self, 'provider', 'unknown')})>"
