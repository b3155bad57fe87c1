"""
Order state machine and provider status-token normalization.

Provider tokens are uppercased, trimmed and looked up in three disjoint
allow-lists (success / failure / pending) that come from configuration.
Anything else lands in the ``unknown`` bucket, which never moves an order.

    draft -> pending -> procesando_pago -> pagado | cancelado

``procesando_pago`` loops onto itself; ``pagado`` and ``cancelado`` are terminal.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, FrozenSet, Iterable, Optional

from cafeteria_pay.config import Settings
from cafeteria_pay.errors import ConfigurationError

# Values written by older versions of the ordering app.
_LEGACY_STATUS = {
    "pendiente": "pending",
    "paid": "pagado",
    "cancelled": "cancelado",
    "canceled": "cancelado",
}


class OrderStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    PROCESANDO_PAGO = "procesando_pago"
    PAGADO = "pagado"
    CANCELADO = "cancelado"

    @classmethod
    def _missing_(cls, value: Any):
        if isinstance(value, str):
            key = value.strip().lower()
            if key in _LEGACY_STATUS:
                return cls(_LEGACY_STATUS[key])
            for member in cls:
                if member.value == key:
                    return member
        return None

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.PAGADO, OrderStatus.CANCELADO)


_RANK = {
    OrderStatus.DRAFT: 0,
    OrderStatus.PENDING: 1,
    OrderStatus.PROCESANDO_PAGO: 2,
    OrderStatus.PAGADO: 3,
    OrderStatus.CANCELADO: 3,
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    """True if ``current -> target`` is a legal (forward or self-loop) move."""
    if current == target:
        return True
    if current.is_terminal:
        return False
    return _RANK[target] > _RANK[current]


class StatusBucket(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"
    UNKNOWN = "unknown"


_TARGETS = {
    StatusBucket.SUCCESS: OrderStatus.PAGADO,
    StatusBucket.FAILURE: OrderStatus.CANCELADO,
    StatusBucket.PENDING: OrderStatus.PROCESANDO_PAGO,
}


@dataclass(frozen=True)
class Normalization:
    raw: str
    token: str
    bucket: StatusBucket

    @property
    def is_unknown(self) -> bool:
        return self.bucket is StatusBucket.UNKNOWN


def _tokens(values: Iterable[str]) -> FrozenSet[str]:
    return frozenset(v.strip().upper() for v in values if v and v.strip())


class StatusNormalizer:
    """Classifies provider status tokens and decides order transitions."""

    def __init__(self, success: Iterable[str], failure: Iterable[str], pending: Iterable[str]):
        self.success = _tokens(success)
        self.failure = _tokens(failure)
        self.pending = _tokens(pending)

        overlap = (self.success & self.failure) | (self.success & self.pending) | (self.failure & self.pending)
        if overlap:
            raise ConfigurationError(
                f"Status token sets must be disjoint; overlapping: {', '.join(sorted(overlap))}"
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> "StatusNormalizer":
        tokens = settings.status_tokens()
        return cls(tokens["success"], tokens["failure"], tokens["pending"])

    def normalize(self, raw: Any) -> Normalization:
        text = "" if raw is None else str(raw)
        token = text.strip().upper()
        if token in self.success:
            bucket = StatusBucket.SUCCESS
        elif token in self.failure:
            bucket = StatusBucket.FAILURE
        elif token in self.pending:
            bucket = StatusBucket.PENDING
        else:
            bucket = StatusBucket.UNKNOWN
        return Normalization(raw=text, token=token, bucket=bucket)

    def decide(self, current: OrderStatus, bucket: StatusBucket) -> Optional[OrderStatus]:
        """
        Target status for an order in ``current`` receiving ``bucket``, or
        ``None`` when the order must keep its status (unknown token, terminal
        order, self-loop or a move that would go backwards).
        """
        target = _TARGETS.get(bucket)
        if target is None or current.is_terminal or target == current:
            return None
        if not can_transition(current, target):
            return None
        return target
