"""
Field probing for provider notifications.

Notification payloads have no fixed schema: the same fact (order reference,
status token, transaction id) shows up under different paths depending on
the provider and its integration version. Each fact is extracted by walking
an ordered list of ``FieldPath`` strategies; the first present candidate
wins, which puts nested, richer fields (``status.status``) ahead of flatter
fallbacks (``state``, ``status``). Disagreeing candidates are reported.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple


@dataclass(frozen=True)
class FieldPath:
    keys: Tuple[str, ...]

    @classmethod
    def parse(cls, dotted: str) -> "FieldPath":
        return cls(tuple(dotted.split(".")))

    def lookup(self, payload: Mapping[str, Any]) -> Any:
        node: Any = payload
        for key in self.keys:
            if not isinstance(node, Mapping) or key not in node:
                return None
            node = node[key]
        return node

    def __str__(self) -> str:
        return ".".join(self.keys)


def _paths(*dotted: str) -> Tuple[FieldPath, ...]:
    return tuple(FieldPath.parse(d) for d in dotted)


REFERENCE_PATHS = _paths("reference", "transaction.reference", "order_id", "orderId")
STATUS_PATHS = _paths("status.status", "state", "status")
PAYMENT_ID_PATHS = _paths(
    "requestId", "transaction.transactionID", "transaction_id", "transactionId", "internalReference"
)
AMOUNT_PATHS = _paths("amount.to.total", "amount.from.total", "amount.total", "amount")
MESSAGE_PATHS = _paths("status.message", "message")
REASON_PATHS = _paths("status.reason", "reason", "error_code")


def _scalar_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (bool, Mapping, list)):
        return None
    text = str(value).strip()
    return text or None


def _amount(value: Any) -> Optional[int]:
    if value is None or isinstance(value, (bool, Mapping, list)):
        return None
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if number != number.to_integral_value():
        return None
    return int(number)


@dataclass
class Candidate:
    path: str
    value: Any


@dataclass
class ExtractedNotification:
    """The deciding facts of one notification, plus where they came from."""

    shape: str
    reference: Optional[str] = None
    status: Optional[str] = None
    payment_id: Optional[str] = None
    amount: Optional[int] = None
    message: Optional[str] = None
    reason: Optional[str] = None
    sources: Dict[str, str] = field(default_factory=dict)
    conflicts: Dict[str, List[Candidate]] = field(default_factory=dict)


def first_match(
    payload: Mapping[str, Any], paths: Sequence[FieldPath], convert=_scalar_text
) -> Tuple[Any, Optional[str], List[Candidate]]:
    """
    Walk ``paths`` in order. Returns ``(value, path, candidates)`` where
    ``value`` is the first convertible candidate and ``candidates`` lists every
    one found (useful to spot disagreeing fields).
    """
    candidates: List[Candidate] = []
    for path in paths:
        value = convert(path.lookup(payload))
        if value is not None:
            candidates.append(Candidate(str(path), value))
    if not candidates:
        return None, None, []
    return candidates[0].value, candidates[0].path, candidates


def _conflicting(candidates: List[Candidate], normalize=lambda v: v) -> bool:
    return len({normalize(c.value) for c in candidates}) > 1


def extract_reference(payload: Mapping[str, Any]) -> Optional[str]:
    return first_match(payload, REFERENCE_PATHS)[0]


def extract_status(payload: Mapping[str, Any]) -> Optional[str]:
    return first_match(payload, STATUS_PATHS)[0]


def extract_notification(payload: Mapping[str, Any], shape: str = "generic") -> ExtractedNotification:
    result = ExtractedNotification(shape=shape)
    specs = (
        ("reference", REFERENCE_PATHS, _scalar_text, lambda v: v),
        ("status", STATUS_PATHS, _scalar_text, lambda v: v.upper()),
        ("payment_id", PAYMENT_ID_PATHS, _scalar_text, None),
        ("amount", AMOUNT_PATHS, _amount, lambda v: v),
        ("message", MESSAGE_PATHS, _scalar_text, None),
        ("reason", REASON_PATHS, _scalar_text, None),
    )
    for name, paths, convert, normalize in specs:
        value, source, candidates = first_match(payload, paths, convert)
        setattr(result, name, value)
        if source:
            result.sources[name] = source
        # transaction id and message legitimately differ between fields
        if normalize is not None and _conflicting(candidates, normalize):
            result.conflicts[name] = candidates
    return result
