# payment_bridge/order_repository.py
"""
Order Repository

Contract to the external document store holding restaurant orders. The bridge
only reads orders and writes back the payment outcome; the store itself is
somebody else's system.

`normalize_order` turns a stored document into an OrderRecord, accepting the
older field names still present in some documents.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class OrderRecord:
    id: str
    user_id: str
    customer_name: str
    customer_phone: str
    address: str
    status: str
    payment_status: str
    total: Decimal
    items: List[Dict[str, Any]]
    created_at: datetime
    notes: str = ""
    payment_method: Optional[str] = None
    paid_at: Optional[datetime] = None
    gateway_order_id: Optional[str] = None
    updated_at: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)


def normalize_order(doc_id: str, data: Dict[str, Any], user_id: str = "") -> OrderRecord:
    """
    Build an OrderRecord from a raw document.
    """
    items = [
        {
            "id": str(item.get("id") or item.get("productId") or ""),
            "name": item.get("name") or "Unknown Item",
            "price": Decimal(str(item.get("price") or item.get("priceAtPurchase") or 0)),
            "quantity": int(item.get("quantity") or 1),
        }
        for item in data.get("items") or []
    ]
    created_at = data.get("createdAt")
    if not isinstance(created_at, datetime):
        created_at = datetime.now(timezone.utc)

    return OrderRecord(
        id=doc_id,
        user_id=user_id or str(data.get("userId") or ""),
        customer_name=data.get("customerName") or "Unknown Customer",
        customer_phone=data.get("phoneNumber") or data.get("customerPhone") or "",
        address=data.get("address") or data.get("deliveryAddress") or "",
        status=data.get("status") or "pending",
        payment_status=data.get("paymentStatus") or "unpaid",
        total=Decimal(str(data.get("total") or data.get("grandTotal") or 0)),
        items=items,
        created_at=created_at,
        notes=data.get("notes") or data.get("additionalNote") or "",
        payment_method=data.get("paymentMethod"),
    )


class OrderRepository(ABC):
    """
    Read/update contract of the external order store.
    """

    @abstractmethod
    async def get_order(self, order_id: str) -> Optional[OrderRecord]:
        pass

    @abstractmethod
    async def list_pending_orders(self) -> List[OrderRecord]:
        """Orders waiting for payment: status pending, payment unpaid."""
        pass

    @abstractmethod
    async def update_payment_status(
        self,
        order_id: str,
        success: bool,
        *,
        gateway_order_id: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> bool:
        """Write the payment outcome back. Returns False if the write failed."""
        pass


class InMemoryOrderRepository(OrderRepository):
    """
    Dict-backed repository for demos and tests.
    """

    def __init__(self, documents: Optional[Dict[str, Dict[str, Any]]] = None) -> None:
        self._orders: Dict[str, OrderRecord] = {
            doc_id: normalize_order(doc_id, data) for doc_id, data in (documents or {}).items()
        }

    def add(self, record: OrderRecord) -> None:
        self._orders[record.id] = record

    async def get_order(self, order_id: str) -> Optional[OrderRecord]:
        record = self._orders.get(order_id)
        return copy.deepcopy(record) if record else None

    async def list_pending_orders(self) -> List[OrderRecord]:
        return [
            copy.deepcopy(r)
            for r in self._orders.values()
            if r.status == "pending" and r.payment_status == "unpaid"
        ]

    async def update_payment_status(
        self,
        order_id: str,
        success: bool,
        *,
        gateway_order_id: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> bool:
        record = self._orders.get(order_id)
        if record is None:
            logger.error("Cannot update unknown order %s", order_id)
            return False

        now = datetime.now(timezone.utc)
        record.status = "confirmed" if success else "cancelled"
        record.payment_status = "paid" if success else "failed"
        record.updated_at = now
        if gateway_order_id:
            record.gateway_order_id = gateway_order_id
        if payment_method:
            record.payment_method = payment_method
        if success:
            record.paid_at = now
        logger.info("Order %s updated: %s/%s", order_id, record.status, record.payment_status)
        return True
