"""
Weekly menu selections and their pricing.

A ledger holds one line per (day, dependent). Each line may carry a lunch
(``almuerzo``) and/or a snack (``colacion``). Prices always come from the
user-type price table; a client-sent price is never trusted.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog

from cafeteria_pay.config import Settings
from cafeteria_pay.errors import ValidationError

from .order_store import Order
from .status_normalizer import OrderStatus

logger = structlog.get_logger(__name__)

ORDER_VERSION = "1.0"
STAFF_KEY = "funcionario"
WORKING_DAYS = 5


class UserType(str, Enum):
    APODERADO = "apoderado"
    FUNCIONARIO = "funcionario"


class MenuCategory(str, Enum):
    ALMUERZO = "almuerzo"
    COLACION = "colacion"


@dataclass(frozen=True)
class MenuItem:
    code: str
    name: str = ""
    description: Optional[str] = None


@dataclass(frozen=True)
class Dependent:
    id: str
    name: str
    curso: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "curso": self.curso}


_STAFF = Dependent(id=STAFF_KEY, name="Funcionario", curso="Personal")


@dataclass(frozen=True)
class LineItem:
    item: MenuItem
    price: int

    def as_dict(self) -> Dict[str, Any]:
        return {"code": self.item.code, "name": self.item.name, "price": self.price}


@dataclass
class Selection:
    date: str
    dependent: Optional[Dependent] = None
    almuerzo: Optional[LineItem] = None
    colacion: Optional[LineItem] = None

    @property
    def is_empty(self) -> bool:
        return self.almuerzo is None and self.colacion is None

    def line(self, category: MenuCategory) -> Optional[LineItem]:
        return self.almuerzo if category is MenuCategory.ALMUERZO else self.colacion

    def as_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "dependent": self.dependent.as_dict() if self.dependent else None,
            "almuerzo": self.almuerzo.as_dict() if self.almuerzo else None,
            "colacion": self.colacion.as_dict() if self.colacion else None,
        }


class PriceTable:
    """Per-item CLP prices keyed by user type and category."""

    def __init__(self, prices: Dict[str, Dict[str, int]]):
        self._prices = {
            UserType(user_type): {MenuCategory(c): int(p) for c, p in by_category.items()}
            for user_type, by_category in prices.items()
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> "PriceTable":
        return cls(settings.price_table())

    def price(self, user_type: UserType, category: MenuCategory) -> int:
        return self._prices[UserType(user_type)][MenuCategory(category)]


@dataclass
class DependentSummary:
    dependent: Dependent
    almuerzos: int = 0
    colaciones: int = 0
    subtotal: int = 0


@dataclass
class OrderSummary:
    selections: List[Selection]
    total_almuerzos: int
    total_colaciones: int
    subtotal_almuerzos: int
    subtotal_colaciones: int
    total: int
    by_dependent: Dict[str, DependentSummary] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "selections": [s.as_dict() for s in self.selections],
            "totalAlmuerzos": self.total_almuerzos,
            "totalColaciones": self.total_colaciones,
            "subtotalAlmuerzos": self.subtotal_almuerzos,
            "subtotalColaciones": self.subtotal_colaciones,
            "total": self.total,
            "byDependent": {
                key: {
                    "dependent": s.dependent.as_dict(),
                    "almuerzos": s.almuerzos,
                    "colaciones": s.colaciones,
                    "subtotal": s.subtotal,
                }
                for key, s in self.by_dependent.items()
            },
        }


@dataclass
class OrderValidation:
    is_valid: bool
    errors: List[str]
    warnings: List[str]
    missing_days: List[str]
    can_proceed_to_payment: bool

    def as_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "missingDays": self.missing_days,
            "canProceedToPayment": self.can_proceed_to_payment,
        }


class OrderSelectionLedger:
    def __init__(self, user_type: UserType, prices: PriceTable):
        self.user_type = UserType(user_type)
        self.prices = prices
        self._lines: Dict[Tuple[str, str], Selection] = {}

    # -- mutation -------------------------------------------------------

    def _key(self, day: str, dependent: Optional[Dependent]) -> Tuple[str, str]:
        if self.user_type is UserType.APODERADO and dependent is None:
            raise ValidationError("Todas las selecciones deben tener un hijo asignado", date=day)
        if self.user_type is UserType.FUNCIONARIO and dependent is not None:
            raise ValidationError("Los funcionarios solo pueden pedir para sí mismos", date=day)
        try:
            date.fromisoformat(day)
        except (TypeError, ValueError):
            raise ValidationError(f"Fecha inválida: {day}", date=day)
        return day, dependent.id if dependent else STAFF_KEY

    def add_selection(
        self, day: str, category: MenuCategory, item: MenuItem, dependent: Optional[Dependent] = None
    ) -> Selection:
        """Add (or replace) one line item; the price comes from the table."""
        return self.update_selection(day, category, item, dependent)

    def update_selection(
        self,
        day: str,
        category: MenuCategory,
        item: Optional[MenuItem],
        dependent: Optional[Dependent] = None,
    ) -> Optional[Selection]:
        """Set or clear one category of a day; a line left empty is removed."""
        category = MenuCategory(category)
        key = self._key(day, dependent)
        selection = self._lines.get(key)

        if item is None:
            if selection is None:
                return None
            setattr(selection, category.value, None)
            if selection.is_empty:
                del self._lines[key]
                return None
            return selection

        if selection is None:
            selection = Selection(date=day, dependent=dependent)
            self._lines[key] = selection
        setattr(selection, category.value, LineItem(item, self.prices.price(self.user_type, category)))
        return selection

    def remove_selection(self, day: str, dependent: Optional[Dependent] = None) -> None:
        self._lines.pop(self._key(day, dependent), None)

    def clear(self) -> None:
        self._lines.clear()

    def load(self, selections: Iterable[Selection]) -> None:
        """Replace the ledger content, re-pricing every line."""
        self.clear()
        for s in selections:
            for category in MenuCategory:
                line = s.line(category)
                if line is not None:
                    self.add_selection(s.date, category, line.item, s.dependent)

    # -- queries --------------------------------------------------------

    @property
    def selections(self) -> List[Selection]:
        return [self._lines[k] for k in sorted(self._lines)]

    def total(self) -> int:
        return self.summary().total

    def summary(self) -> OrderSummary:
        selections = self.selections
        by_dependent: Dict[str, DependentSummary] = {}
        counts = {MenuCategory.ALMUERZO: 0, MenuCategory.COLACION: 0}
        subtotals = {MenuCategory.ALMUERZO: 0, MenuCategory.COLACION: 0}

        for s in selections:
            who = s.dependent or _STAFF
            entry = by_dependent.setdefault(who.id, DependentSummary(dependent=who))
            for category in MenuCategory:
                line = s.line(category)
                if line is None:
                    continue
                counts[category] += 1
                subtotals[category] += line.price
                entry.subtotal += line.price
                if category is MenuCategory.ALMUERZO:
                    entry.almuerzos += 1
                else:
                    entry.colaciones += 1

        return OrderSummary(
            selections=selections,
            total_almuerzos=counts[MenuCategory.ALMUERZO],
            total_colaciones=counts[MenuCategory.COLACION],
            subtotal_almuerzos=subtotals[MenuCategory.ALMUERZO],
            subtotal_colaciones=subtotals[MenuCategory.COLACION],
            total=subtotals[MenuCategory.ALMUERZO] + subtotals[MenuCategory.COLACION],
            by_dependent=by_dependent,
        )

    def validate(self, week_days: List[str], ordering_allowed: bool = True) -> OrderValidation:
        """
        Any non-empty combination of lunches and snacks on any subset of days
        may be paid for. Incomplete weeks only produce warnings.
        """
        errors: List[str] = []
        warnings: List[str] = []
        missing_days: List[str] = []
        selections = self.selections

        if not ordering_allowed:
            errors.append("El tiempo para realizar pedidos ha expirado")
        if not selections:
            errors.append("Debe seleccionar al menos un almuerzo o colación para proceder")

        with_lunch = [s for s in selections if s.almuerzo]
        with_snack = [s for s in selections if s.colacion]

        if with_lunch:
            lunch_days = {s.date for s in with_lunch}
            missing_days = [d for d in week_days[:WORKING_DAYS] if d not in lunch_days]
            if missing_days:
                warnings.append(
                    f"Tienes {len(missing_days)} día(s) sin almuerzo seleccionado. "
                    "Puedes agregar más días después del pago."
                )
        if not with_lunch and with_snack:
            warnings.append(
                f"Has seleccionado solo colaciones ({len(with_snack)}). "
                "Puedes agregar almuerzos después del pago si lo deseas."
            )
        if with_lunch and not with_snack:
            warnings.append(
                f"Has seleccionado solo almuerzos ({len(with_lunch)}). Las colaciones son opcionales."
            )

        return OrderValidation(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            missing_days=missing_days,
            can_proceed_to_payment=not errors and ordering_allowed and bool(selections),
        )

    def to_order(self, user_id: str, week_start: str, order_id: Optional[str] = None) -> Order:
        """A draft order whose total is recomputed from the price table."""
        selections = self.selections
        if not selections:
            raise ValidationError("No hay selecciones válidas para guardar")
        summary = self.summary()
        order = Order(
            id=order_id or uuid.uuid4().hex,
            user_id=user_id,
            user_type=self.user_type.value,
            week_start=week_start,
            selections=[s.as_dict() for s in selections],
            total=summary.total,
            status=OrderStatus.DRAFT,
            metadata={"version": ORDER_VERSION, "source": "web"},
        )
        logger.info(
            "order_drafted",
            order_id=order.id,
            user_type=self.user_type.value,
            lines=len(selections),
            total=order.total,
        )
        return order
