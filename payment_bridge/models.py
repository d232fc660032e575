# payment_bridge/models.py
"""
Pydantic models for the HTTP surface and for the gateway callback form.

JSON field names follow the POS app (camelCase); Python attributes are
snake_case and both are accepted on input.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .payment_session import PaymentSession


class OrderItemIn(BaseModel):
    """
    One cart line sent by the POS app.
    """
    id: str = Field(..., description="Item identifier")
    name: str = Field(..., description="Display name printed on the receipt")
    price: Decimal = Field(..., description="VAT-inclusive unit price")
    quantity: int = Field(1, description="Number of units")

    @field_validator("price")
    @classmethod
    def _price_positive(cls, value: Decimal) -> Decimal:
        if not value.is_finite() or value <= 0:
            raise ValueError("price must be a finite positive number")
        if value.normalize().as_tuple().exponent < -2:
            raise ValueError("price must not have more than 2 decimal places")
        return value

    @field_validator("quantity")
    @classmethod
    def _quantity_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("quantity must be at least 1")
        return value


class CustomerInfo(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None


class InitiatePaymentRequest(BaseModel):
    """
    Body of POST /payment/initiate.

    `orderId` is only honoured under the "reuse" order id policy.
    """
    model_config = ConfigDict(populate_by_name=True)

    items: List[OrderItemIn] = Field(..., min_length=1)
    customer_info: Optional[CustomerInfo] = Field(None, alias="customerInfo")
    order_id: Optional[str] = Field(None, alias="orderId")


class InitiatePaymentResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    order_id: str = Field(..., alias="orderId")
    payment_url: str = Field(..., alias="paymentUrl")


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    code: str


class OrderView(BaseModel):
    """
    Public view of a PaymentSession, as returned by the status endpoint.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str
    status: Literal["pending", "paid", "failed"]
    total: Decimal
    created_at: datetime = Field(..., alias="createdAt")
    paid_at: Optional[datetime] = Field(None, alias="paidAt")
    failure_reason: Optional[str] = Field(None, alias="failureReason")

    @classmethod
    def from_session(cls, session: PaymentSession) -> "OrderView":
        return cls(
            id=session.order_id,
            status=session.status,
            total=session.amount,
            created_at=session.created_at,
            paid_at=session.paid_at,
            failure_reason=session.failure_reason,
        )


class OrderStatusResponse(BaseModel):
    success: bool = True
    order: OrderView


class PrintJobIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(..., alias="orderId")
    receipt_data: Dict[str, Any] = Field(default_factory=dict, alias="receiptData")


class GatewayCallback(BaseModel):
    """
    Form body posted by the gateway to okUrl / failUrl.

    Only the fields the bridge reasons about are typed; anything else the
    gateway sends is kept (extra="allow") so that it can be hashed and stored.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    oid: str = Field(..., min_length=1)
    proc_return_code: Optional[str] = Field(None, alias="ProcReturnCode")
    response: Optional[str] = Field(None, alias="Response")
    md_status: Optional[str] = Field(None, alias="mdStatus")
    auth_code: Optional[str] = Field(None, alias="AuthCode")
    hash: Optional[str] = Field(None, alias="HASH")
    client_id: Optional[str] = Field(None, alias="clientid")
    amount: Optional[str] = None
    rnd: Optional[str] = None
    err_msg: Optional[str] = Field(None, alias="ErrMsg")

    def raw(self) -> Dict[str, Any]:
        """
        The payload exactly as the gateway named its fields.
        """
        return self.model_dump(by_alias=True, exclude_none=True)
