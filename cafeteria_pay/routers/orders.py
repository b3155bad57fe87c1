"""
Order drafting: POST /orders/summary, POST /orders

Totals are always recomputed from the price table for the user type.
"""
from fastapi import APIRouter, Depends

from cafeteria_pay.deps import get_order_store, get_price_table
from cafeteria_pay.errors import ValidationError
from cafeteria_pay.schemas_pkg import OrderCreatedResponse, OrderDraftRequest, OrderSummaryResponse
from cafeteria_pay.services.order_store import OrderStore
from cafeteria_pay.services.selection_ledger import (
    Dependent,
    MenuCategory,
    MenuItem,
    OrderSelectionLedger,
    PriceTable,
    UserType,
)

router = APIRouter()


def _ledger(payload: OrderDraftRequest, prices: PriceTable) -> OrderSelectionLedger:
    try:
        user_type = UserType(payload.user_type.strip().lower())
    except ValueError:
        raise ValidationError(f"Tipo de usuario inválido: {payload.user_type}")

    ledger = OrderSelectionLedger(user_type, prices)
    for line in payload.selections:
        dependent = Dependent(**line.dependent.model_dump()) if line.dependent else None
        for category in MenuCategory:
            item = getattr(line, category.value)
            if item is not None:
                ledger.add_selection(
                    line.date,
                    category,
                    MenuItem(code=item.code, name=item.name, description=item.description),
                    dependent,
                )
    return ledger


@router.post("/summary", response_model=OrderSummaryResponse)
def order_summary(payload: OrderDraftRequest, prices: PriceTable = Depends(get_price_table)):
    ledger = _ledger(payload, prices)
    return {
        "summary": ledger.summary().as_dict(),
        "validation": ledger.validate(payload.week_days, payload.ordering_allowed).as_dict(),
    }


@router.post("", response_model=OrderCreatedResponse, status_code=201)
def create_order(
    payload: OrderDraftRequest,
    prices: PriceTable = Depends(get_price_table),
    store: OrderStore = Depends(get_order_store),
):
    ledger = _ledger(payload, prices)
    validation = ledger.validate(payload.week_days, payload.ordering_allowed)
    if not validation.can_proceed_to_payment:
        raise ValidationError(validation.errors[0] if validation.errors else "Pedido inválido",
                              errors=validation.errors)

    order = store.create(ledger.to_order(payload.user_id, payload.week_start))
    return OrderCreatedResponse(
        order_id=order.id,
        total=order.total,
        status=order.status.value,
        warnings=validation.warnings,
    )
