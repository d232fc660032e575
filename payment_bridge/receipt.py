# payment_bridge/receipt.py
"""
Receipt

ReceiptJob is built right before printing and thrown away afterwards. The
same text layout is used by the hardware printer and by the simulation log.

Unit prices are VAT-inclusive: the tax line shows the VAT contained in the
total, the total is what the customer paid.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from .config import Settings, settings
from .payment_session import to_cents

WIDTH = 32


@dataclass
class ReceiptLine:
    name: str
    unit_price: Decimal
    quantity: int

    @property
    def subtotal(self) -> Decimal:
        return to_cents(self.unit_price * self.quantity)


@dataclass
class StoreInfo:
    name: str
    address: str = ""
    phone: str = ""
    tax_id: str = ""

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "StoreInfo":
        return cls(
            name=config.STORE_NAME,
            address=config.STORE_ADDRESS,
            phone=config.STORE_PHONE,
            tax_id=config.STORE_TAX_ID,
        )


@dataclass
class ReceiptJob:
    order_id: str
    lines: List[ReceiptLine]
    tax: Decimal
    total: Decimal
    vat_rate: Decimal
    payment_method: str
    timestamp: datetime
    store: StoreInfo
    currency_label: str = "TL"
    customer_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """
        JSON-friendly form, as sent to the backend print journal.
        """
        data = asdict(self)
        data["lines"] = [
            {
                "name": line.name,
                "unitPrice": str(line.unit_price),
                "quantity": line.quantity,
                "subtotal": str(line.subtotal),
            }
            for line in self.lines
        ]
        data["tax"] = str(self.tax)
        data["total"] = str(self.total)
        data["vat_rate"] = str(self.vat_rate)
        data["timestamp"] = self.timestamp.isoformat()
        return data


def build_receipt_job(
    order_id: str,
    items: Iterable[Dict[str, Any]],
    *,
    payment_method: Optional[str] = None,
    customer_name: Optional[str] = None,
    timestamp: Optional[datetime] = None,
    config: Settings = settings,
) -> ReceiptJob:
    """
    `items` are dicts with name / price / quantity, as stored on orders.
    """
    lines = [
        ReceiptLine(
            name=str(item.get("name") or "Unknown Item"),
            unit_price=Decimal(str(item.get("price", 0))),
            quantity=int(item.get("quantity", 1)),
        )
        for item in items
    ]
    total = sum((line.subtotal for line in lines), Decimal("0.00"))
    rate = config.VAT_RATE
    tax = to_cents(total - total / (1 + rate))

    return ReceiptJob(
        order_id=order_id,
        lines=lines,
        tax=tax,
        total=total,
        vat_rate=rate,
        payment_method=payment_method or config.PAYMENT_METHOD_LABEL,
        timestamp=timestamp or datetime.now(timezone.utc),
        store=StoreInfo.from_settings(config),
        currency_label=config.CURRENCY_LABEL,
        customer_name=customer_name,
    )


def format_receipt_text(job: ReceiptJob) -> str:
    """
    Plain-text receipt for a 32-column thermal printer.
    """
    cur = job.currency_label
    rule = "=" * WIDTH
    thin = "-" * WIDTH
    out: List[str] = [rule, job.store.name.upper().center(WIDTH).rstrip(), rule]

    if job.store.address or job.store.phone:
        if job.store.address:
            out.append(job.store.address)
        if job.store.phone:
            out.append(f"Tel: {job.store.phone}")
        if job.store.tax_id:
            out.append(f"Tax ID: {job.store.tax_id}")
        out.append(thin)

    out.append(f"Order: {job.order_id}")
    out.append(f"Date: {job.timestamp:%d.%m.%Y}")
    out.append(f"Time: {job.timestamp:%H:%M:%S}")
    if job.customer_name:
        out.append(f"Customer: {job.customer_name}")
    out.append(rule)

    for line in job.lines:
        out.append(line.name)
        out.append(f"  {line.quantity} x {line.unit_price:.2f} {cur} = {line.subtotal:.2f} {cur}")
    out.append(thin)

    percent = (job.vat_rate * 100).normalize()
    out.append(f"VAT incl. ({percent:f}%): {job.tax:.2f} {cur}")
    out.append(f"TOTAL:        {job.total:.2f} {cur}")
    out.append(f"Payment:      {job.payment_method}")
    out.append(rule)
    out.append("THANK YOU!".center(WIDTH).rstrip())
    out.append("Please come again".center(WIDTH).rstrip())
    out.append(rule)
    return "\n".join(out) + "\n"


def qr_payload(job: ReceiptJob) -> str:
    return f"order:{job.order_id}:{job.total:.2f}"


def sample_job(config: Settings = settings) -> ReceiptJob:
    """
    Receipt used by the printer self-test.
    """
    return build_receipt_job(
        f"TEST_{int(datetime.now(timezone.utc).timestamp() * 1000)}",
        [
            {"name": "Test Coffee", "price": "25.00", "quantity": 1},
            {"name": "Test Croissant", "price": "15.00", "quantity": 2},
        ],
        payment_method="Test Mode",
        customer_name="Test Customer",
        config=config,
    )
