from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MenuItemIn(BaseModel):
    # A client-sent "price" is ignored; prices come from the price table.
    model_config = ConfigDict(extra="ignore")

    code: str
    name: str = ""
    description: Optional[str] = None


class DependentIn(BaseModel):
    id: str
    name: str
    curso: Optional[str] = None


class SelectionIn(BaseModel):
    date: str
    dependent: Optional[DependentIn] = None
    almuerzo: Optional[MenuItemIn] = None
    colacion: Optional[MenuItemIn] = None


class OrderDraftRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    user_type: str = Field(default="apoderado", alias="userType")
    week_start: str = Field(alias="weekStart")
    week_days: List[str] = Field(default_factory=list, alias="weekDays")
    ordering_allowed: bool = Field(default=True, alias="orderingAllowed")
    selections: List[SelectionIn] = Field(default_factory=list)


class OrderSummaryResponse(BaseModel):
    summary: Dict[str, Any]
    validation: Dict[str, Any]


class OrderCreatedResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    order_id: str = Field(alias="orderId")
    total: int
    status: str
    warnings: List[str] = Field(default_factory=list)
