"""
Request signing for the supported gateways.

Two schemes coexist:

* ``HMAC``: HMAC-SHA256 (hex) over ``key=value`` pairs of the payload, keys
  sorted lexicographically and joined with ``&``. The ``signature`` field
  itself and ``None`` values are left out.
* ``NONCE_SEED``: the GetNet Web Checkout ``auth`` block. A random 16 byte
  nonce and a UTC ISO-8601 seed produce
  ``tranKey = Base64(SHA256(nonce_bytes + seed + secret))``. The hash input is
  the raw nonce, the transmitted nonce is its Base64 text.

Pure functions, no I/O.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from cafeteria_pay.errors import ConfigurationError

SIGNATURE_FIELD = "signature"
NONCE_BYTES = 16


class SignatureScheme(str, Enum):
    HMAC = "hmac"
    NONCE_SEED = "nonce_seed"


@dataclass(frozen=True)
class NonceAuth:
    """GetNet ``auth`` block."""

    login: str
    tran_key: str
    nonce: str
    seed: str

    def as_payload(self) -> Dict[str, str]:
        return {
            "login": self.login,
            "tranKey": self.tran_key,
            "nonce": self.nonce,
            "seed": self.seed,
        }


def _require_secret(secret: Optional[str]) -> str:
    if not secret:
        raise ConfigurationError("Signing secret is not configured")
    return secret


def _canonical_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    # ints, floats, bools, lists and dicts go through JSON so the text is
    # identical on both ends (true/false, compact sorted objects).
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def canonical_string(payload: Mapping[str, Any]) -> str:
    """Sorted ``k=v`` pairs joined with ``&``, excluding the signature field."""
    parts = []
    for key in sorted(payload):
        if key == SIGNATURE_FIELD:
            continue
        value = payload[key]
        if value is None:
            continue
        parts.append(f"{key}={_canonical_value(value)}")
    return "&".join(parts)


def hmac_signature(payload: Mapping[str, Any], secret: Optional[str]) -> str:
    key = _require_secret(secret)
    message = canonical_string(payload)
    return hmac.new(key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify(payload: Mapping[str, Any], signature: Optional[str], secret: Optional[str]) -> bool:
    """Check an HMAC signature in constant time."""
    if not signature or not isinstance(signature, str):
        return False
    expected = hmac_signature(payload, secret)
    return hmac.compare_digest(expected, signature.strip().lower())


def utc_seed(now: Optional[datetime] = None) -> str:
    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="seconds")


def transaction_key(nonce_bytes: bytes, seed: str, secret: Optional[str]) -> str:
    key = _require_secret(secret)
    digest = hashlib.sha256(nonce_bytes + seed.encode("utf-8") + key.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def nonce_auth(
    login: Optional[str],
    secret: Optional[str],
    *,
    nonce_bytes: Optional[bytes] = None,
    now: Optional[datetime] = None,
) -> NonceAuth:
    """Build the ``auth`` block; ``nonce_bytes``/``now`` are injectable for tests."""
    if not login:
        raise ConfigurationError("Gateway login is not configured")
    _require_secret(secret)
    raw = nonce_bytes if nonce_bytes is not None else os.urandom(NONCE_BYTES)
    seed = utc_seed(now)
    return NonceAuth(
        login=login,
        tran_key=transaction_key(raw, seed, secret),
        nonce=base64.b64encode(raw).decode("ascii"),
        seed=seed,
    )


def sign(payload: Mapping[str, Any], secret: Optional[str], scheme: SignatureScheme = SignatureScheme.HMAC,
         **options: Any) -> Any:
    """
    Sign ``payload`` with the given scheme.

    For ``HMAC`` the hex signature is returned. For ``NONCE_SEED`` the payload
    must carry ``login`` and a ``NonceAuth`` is returned; ``nonce_bytes`` and
    ``now`` may be passed through ``options``.
    """
    if scheme == SignatureScheme.HMAC:
        return hmac_signature(payload, secret)
    if scheme == SignatureScheme.NONCE_SEED:
        return nonce_auth(payload.get("login"), secret, **options)
    raise ConfigurationError(f"Unsupported signature scheme: {scheme}")

