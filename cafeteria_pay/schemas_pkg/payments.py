from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PaymentCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Presence is checked by the adapter so the payer gets a single message.
    amount: Optional[int] = None                    # CLP
    order_id: Optional[str] = Field(default=None, alias="orderId")
    customer_email: Optional[str] = Field(default=None, alias="customerEmail")
    customer_name: Optional[str] = Field(default=None, alias="customerName")
    description: Optional[str] = None
    return_url: Optional[str] = Field(default=None, alias="returnUrl")
    notify_url: Optional[str] = Field(default=None, alias="notifyUrl")
    cancel_url: Optional[str] = Field(default=None, alias="cancelUrl")
    provider: Optional[str] = None                  # defaults to PAYMENT_PROVIDER


class PaymentCreateResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    payment_id: Optional[str] = Field(default=None, alias="paymentId")
    redirect_url: Optional[str] = Field(default=None, alias="redirectUrl")
    transaction_id: Optional[str] = Field(default=None, alias="transactionId")
    error: Optional[str] = None


class PaymentStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    provider: str
    request_id: str = Field(alias="requestId")
    status: Optional[str] = None
    bucket: str
    message: Optional[str] = None
    reference: Optional[str] = None


class NotificationAck(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    order_id: Optional[str] = Field(default=None, alias="orderId")
    status: Optional[str] = None
    original_status: Optional[str] = Field(default=None, alias="originalStatus")
    normalized_status: Optional[str] = Field(default=None, alias="normalizedStatus")
    timestamp: str


class NotifyLiveness(BaseModel):
    status: str
    service: str
    timestamp: str
    environment: str
