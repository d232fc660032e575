# payment_bridge/payment_session.py
"""
PaymentSession

One attempt to collect payment for one order, tracked from initiation to its
terminal outcome.

Contains:
- Identity (order_id) and money (amount, currency).
- Handshake data (nonce, signature) recorded when the redirect is built.
- Status: pending -> paid | failed. Both terminal states are final.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Literal, Optional


CENT = Decimal("0.01")

SessionStatus = Literal["pending", "paid", "failed"]
TERMINAL_STATUSES = ("paid", "failed")


def to_cents(value: Decimal) -> Decimal:
    """
    Money rounding shared by the charged amount and the printed receipt.
    """
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class LineItem:
    """
    One ordered item. Prices are VAT-inclusive unit prices.
    """
    id: str
    name: str
    price: Decimal
    quantity: int

    @property
    def subtotal(self) -> Decimal:
        return to_cents(self.price * self.quantity)


@dataclass
class Customer:
    name: str = ""
    email: str = ""


@dataclass
class PaymentSession:
    """
    Owned by the OrderBroker. Callers only ever receive copies (see `snapshot`).
    """
    order_id: str
    amount: Decimal
    currency: str
    items: List[LineItem]
    customer: Customer
    created_at: datetime
    status: SessionStatus = "pending"
    nonce: Optional[str] = None
    signature: Optional[str] = None
    paid_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    gateway_payload: Dict[str, Any] = field(default_factory=dict)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------
    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def formatted_amount(self) -> str:
        """
        Amount as the gateway expects it: fixed point, two decimals.
        """
        return f"{self.amount:.2f}"

    def snapshot(self) -> "PaymentSession":
        return copy.deepcopy(self)
