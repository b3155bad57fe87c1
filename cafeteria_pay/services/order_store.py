"""
Order persistence and its mutation contract.

``update`` is the atomic unit used by session creation and webhook
reconciliation. Within a single transaction it reads the row (``FOR UPDATE``
where the backend supports it), checks the order invariants, merges metadata
without destroying existing keys and writes back guarded by a
compare-and-swap on ``orders.version``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from cafeteria_pay.errors import (
    ConcurrentUpdateError,
    InvariantViolationError,
    OrderNotFoundError,
    PaymentError,
    StoreUnavailableError,
)
from cafeteria_pay.models import OrderRecord

from .status_normalizer import OrderStatus, can_transition

logger = structlog.get_logger(__name__)

_MUTABLE_FIELDS = {"status", "total", "selections", "payment_id", "paid_at", "metadata"}


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class Order:
    id: str
    user_id: str
    week_start: str
    user_type: str = "apoderado"
    selections: List[Dict[str, Any]] = field(default_factory=list)
    total: int = 0
    status: OrderStatus = OrderStatus.DRAFT
    version: int = 0
    payment_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: OrderRecord) -> "Order":
        return cls(
            id=record.id,
            user_id=record.user_id,
            user_type=record.user_type,
            week_start=record.week_start,
            selections=list(record.selections or []),
            total=record.total,
            status=OrderStatus(record.status),
            version=record.version,
            payment_id=record.payment_id,
            paid_at=_aware(record.paid_at),
            metadata=dict(record.meta or {}),
            created_at=_aware(record.created_at),
            updated_at=_aware(record.updated_at),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "userType": self.user_type,
            "weekStart": self.week_start,
            "selections": self.selections,
            "total": self.total,
            "status": self.status.value,
            "paymentId": self.payment_id,
            "paidAt": self.paid_at.isoformat() if self.paid_at else None,
            "metadata": self.metadata,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


def merge_metadata(
    existing: Mapping[str, Any], incoming: Mapping[str, Any], refresh: Iterable[str] = ()
) -> Dict[str, Any]:
    """
    Non-destructive merge: new keys are added, list values are appended,
    existing scalar keys are kept. Only keys named in ``refresh`` are replaced.
    """
    refresh = set(refresh)
    merged = dict(existing)
    for key, value in incoming.items():
        if key not in merged or key in refresh:
            merged[key] = value
        elif isinstance(merged[key], list):
            merged[key] = merged[key] + (list(value) if isinstance(value, list) else [value])
        elif merged[key] != value:
            logger.debug("metadata_key_preserved", key=key)
    return merged


class OrderStore:
    """Relational order store behind the ``get_by_id`` / ``update`` contract."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get_by_id(self, order_id: str) -> Optional[Order]:
        try:
            with self.session_factory() as db:
                record = db.get(OrderRecord, order_id)
                return Order.from_record(record) if record else None
        except SQLAlchemyError as e:
            logger.error("order_store_unavailable", operation="get", order_id=order_id, error=str(e))
            raise StoreUnavailableError(f"Could not read order {order_id}", order_id=order_id) from e

    def create(self, order: Order) -> Order:
        if order.status is not OrderStatus.DRAFT:
            raise InvariantViolationError("Orders are created as draft", order_id=order.id)
        record = OrderRecord(
            id=order.id,
            user_id=order.user_id,
            user_type=order.user_type,
            week_start=order.week_start,
            selections=order.selections,
            total=order.total,
            status=order.status.value,
            version=0,
            meta=order.metadata,
        )
        try:
            with self.session_factory() as db:
                db.add(record)
                db.commit()
                db.refresh(record)
                created = Order.from_record(record)
        except SQLAlchemyError as e:
            logger.error("order_store_unavailable", operation="create", order_id=order.id, error=str(e))
            raise StoreUnavailableError(f"Could not create order {order.id}", order_id=order.id) from e
        logger.info("order_created", order_id=created.id, total=created.total, user_type=created.user_type)
        return created

    def update(
        self,
        order_id: str,
        fields: Mapping[str, Any],
        expected_version: Optional[int] = None,
        refresh_metadata: Iterable[str] = (),
    ) -> Order:
        """
        Apply ``fields`` to the order atomically.

        Raises:
            OrderNotFoundError: no such order
            ConcurrentUpdateError: ``expected_version`` is stale or the row
                changed between read and write
            InvariantViolationError: backwards status, rewritten payment_id /
                paid_at, total changed outside draft
            StoreUnavailableError: database failure
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise InvariantViolationError(f"Fields not updatable: {', '.join(sorted(unknown))}", order_id=order_id)

        db = self.session_factory()
        try:
            record = db.execute(
                select(OrderRecord).where(OrderRecord.id == order_id).with_for_update()
            ).scalar_one_or_none()
            if record is None:
                raise OrderNotFoundError(f"Order {order_id} not found", order_id=order_id)

            read_version = record.version
            if expected_version is not None and read_version != expected_version:
                raise ConcurrentUpdateError(
                    f"Order {order_id} is at version {read_version}, expected {expected_version}",
                    order_id=order_id,
                )

            values = self._checked_values(record, fields, refresh_metadata)
            values["version"] = read_version + 1
            values["updated_at"] = datetime.now(timezone.utc)

            result = db.execute(
                update(OrderRecord)
                .where(OrderRecord.id == order_id, OrderRecord.version == read_version)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConcurrentUpdateError(f"Order {order_id} changed concurrently", order_id=order_id)
            db.commit()

            db.expire_all()
            updated = Order.from_record(db.get(OrderRecord, order_id))
        except PaymentError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("order_store_unavailable", operation="update", order_id=order_id, error=str(e))
            raise StoreUnavailableError(f"Could not update order {order_id}", order_id=order_id) from e
        finally:
            db.close()

        logger.info(
            "order_mutated",
            order_id=order_id,
            status=updated.status.value,
            version=updated.version,
            fields=sorted(fields),
        )
        return updated

    def _checked_values(
        self, record: OrderRecord, fields: Mapping[str, Any], refresh_metadata: Iterable[str]
    ) -> Dict[str, Any]:
        current = OrderStatus(record.status)
        values: Dict[str, Any] = {}

        if "status" in fields:
            target = OrderStatus(fields["status"])
            if not can_transition(current, target):
                raise InvariantViolationError(
                    f"Illegal status transition {current.value} -> {target.value}",
                    order_id=record.id,
                )
            values["status"] = target.value

        if "total" in fields and fields["total"] != record.total:
            if current is not OrderStatus.DRAFT:
                raise InvariantViolationError("Order total is fixed once the order leaves draft", order_id=record.id)
            values["total"] = fields["total"]

        if "selections" in fields:
            if current is not OrderStatus.DRAFT:
                raise InvariantViolationError("Selections are fixed once the order leaves draft", order_id=record.id)
            values["selections"] = fields["selections"]

        payment_id = fields.get("payment_id")
        if payment_id is not None:
            if record.payment_id and record.payment_id != payment_id:
                raise InvariantViolationError("payment_id is write-once", order_id=record.id)
            values["payment_id"] = payment_id

        if fields.get("paid_at") is not None:
            if record.paid_at is not None:
                raise InvariantViolationError("paid_at is write-once", order_id=record.id)
            values["paid_at"] = fields["paid_at"]

        if "metadata" in fields:
            values["meta"] = merge_metadata(record.meta or {}, fields["metadata"] or {}, refresh_metadata)

        return values
