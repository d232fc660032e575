# payment_bridge/reconciliation.py
"""
Reconciliation & Receipt Driver

POS-side counterpart of PaymentService. Takes the Result Interpreter's
classification and decides what the operator is told.

Flow for a `success` classification:
- Ask the backend for the authoritative session status (bounded retries in
  BackendClient). The classification came from a URL, which proves nothing.
- Only if the backend says `paid`:
  - build the ReceiptJob and print it,
  - write paymentStatus=paid back to the order repository,
  - report success (with a print warning if the receipt did not come out).
- Anything else is reported as unverifiable, never as success.

`failure` never prints and never touches the order repository. A `cancelled`
classification does the same unless the backend refuses the cancel because the
gateway already confirmed the charge; then it is reconciled like a success.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional

from .backend_client import BackendClient
from .config import Settings, settings
from .errors import (
    ConflictingResult,
    NetworkError,
    PaymentBridgeError,
    SessionNotFound,
    UnverifiableOutcome,
)
from .order_repository import OrderRecord, OrderRepository
from .printer import PrinterAdapter, PrintResult
from .receipt import build_receipt_job
from .result_interpreter import ClassifiedResult, Outcome

logger = logging.getLogger(__name__)


ReportKind = Literal[
    "paid",
    "paid_print_failed",
    "unverifiable",
    "verify_error",
    "failed",
    "cancelled",
]


@dataclass
class PendingPayment:
    """
    A payment the POS started: gateway order id plus what is needed to print
    and to update the stored order afterwards.
    """
    gateway_order_id: str
    payment_url: str
    items: List[Dict[str, Any]]
    order_ref: Optional[str] = None
    customer_name: Optional[str] = None
    total: Decimal = Decimal("0.00")


@dataclass
class PaymentReport:
    order_id: str
    kind: ReportKind
    title: str
    message: str
    status: Optional[str] = None
    print_result: Optional[PrintResult] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def payment_succeeded(self) -> bool:
        return self.kind in ("paid", "paid_print_failed")


Notifier = Callable[[PaymentReport], Awaitable[None]]


class ReceiptDriver:
    """
    Create once per POS app and use `on_result` as the ResultInterpreter
    handler.
    """

    def __init__(
        self,
        backend: BackendClient,
        printer: PrinterAdapter,
        repository: OrderRepository,
        config: Settings = settings,
        notify: Optional[Notifier] = None,
    ) -> None:
        self.backend = backend
        self.printer = printer
        self.repository = repository
        self.config = config
        self.notify = notify
        self._payments: Dict[str, PendingPayment] = {}
        self._attempts: Dict[str, str] = {}
        self.reports: List[PaymentReport] = []

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------
    async def start_payment(self, order: OrderRecord, customer_email: Optional[str] = None) -> PendingPayment:
        """
        Open a backend session for a stored order.
        """
        items = [
            {
                "id": item["id"],
                "name": item["name"],
                "price": str(item["price"]),
                "quantity": item["quantity"],
            }
            for item in order.items
        ]
        data = await self.backend.initiate_payment(
            items,
            {"name": order.customer_name, "email": customer_email or ""},
            order_id=order.id if self.config.RETRY_ORDER_ID_POLICY == "reuse" else None,
        )
        pending = PendingPayment(
            gateway_order_id=data["orderId"],
            payment_url=data["paymentUrl"],
            items=items,
            order_ref=order.id,
            customer_name=order.customer_name,
            total=order.total,
        )
        self.track(pending)
        return pending

    def track(self, pending: PendingPayment) -> None:
        self._payments[pending.gateway_order_id] = pending
        self._attempts[pending.gateway_order_id] = "pending"

    def attempt_status(self, gateway_order_id: str) -> Optional[str]:
        return self._attempts.get(gateway_order_id)

    async def on_result(self, result: ClassifiedResult) -> None:
        report = await self.handle(result.order_id, result.outcome, result.source)
        self.reports.append(report)
        if self.notify is not None:
            await self.notify(report)

    async def handle(self, order_id: str, outcome: Outcome, source: str = "navigation") -> PaymentReport:
        logger.info("Reconciling %s result for %s (from %s)", outcome, order_id, source)
        if outcome == "success":
            return await self._handle_success(order_id)
        if outcome == "cancelled":
            return await self._handle_cancelled(order_id)
        return self._handle_failure(order_id)

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------
    async def _handle_success(self, order_id: str) -> PaymentReport:
        try:
            order = await self._confirm_paid(order_id)
        except NetworkError as exc:
            logger.error("Could not verify %s: %s", order_id, exc.message)
            return PaymentReport(
                order_id=order_id,
                kind="verify_error",
                title="Unable to verify payment",
                message=(
                    "The payment server could not be reached to confirm this payment. "
                    f"Do not charge again; contact support with order {order_id}."
                ),
            )
        except UnverifiableOutcome as exc:
            return PaymentReport(
                order_id=order_id,
                kind="unverifiable",
                title="Payment status unknown",
                message=exc.message,
                status=self._attempts.get(order_id),
            )

        self._attempts[order_id] = "paid"
        pending = self._payments.get(order_id)
        items = pending.items if pending else []
        job = build_receipt_job(
            order_id,
            items,
            customer_name=pending.customer_name if pending else None,
            config=self.config,
        )
        print_result = await self.printer.print(job)

        warnings: List[str] = []
        if pending and pending.order_ref:
            written = await self.repository.update_payment_status(
                pending.order_ref,
                True,
                gateway_order_id=order_id,
                payment_method=self.config.PAYMENT_METHOD_LABEL,
            )
            if not written:
                warnings.append(
                    f"Order {pending.order_ref} could not be marked paid; update it manually."
                )

        if print_result.success:
            await self._log_print_job(order_id, job.to_dict())
            if print_result.message:
                warnings.append(print_result.message)

        total = Decimal(str(order.get("total", job.total)))
        if print_result.success:
            return PaymentReport(
                order_id=order_id,
                kind="paid",
                title="Payment & print complete",
                message=(
                    f"Payment of {total:.2f} {self.config.CURRENCY_LABEL} confirmed. "
                    "Please hand the receipt to the customer."
                ),
                status="paid",
                print_result=print_result,
                warnings=warnings,
            )
        return PaymentReport(
            order_id=order_id,
            kind="paid_print_failed",
            title="Payment successful, receipt not printed",
            message=(
                f"Payment of {total:.2f} {self.config.CURRENCY_LABEL} confirmed, but the receipt "
                f"could not be printed ({print_result.message}). Please issue a manual receipt."
            ),
            status="paid",
            print_result=print_result,
            warnings=warnings,
        )

    def _handle_failure(self, order_id: str) -> PaymentReport:
        self._attempts[order_id] = "failed"
        return PaymentReport(
            order_id=order_id,
            kind="failed",
            title="Payment failed",
            message=(
                "The card payment was declined or could not be completed. No charge was made. "
                "Try again or use another payment method."
            ),
            status="failed",
        )

    async def _handle_cancelled(self, order_id: str) -> PaymentReport:
        self._attempts[order_id] = "failed"
        report = PaymentReport(
            order_id=order_id,
            kind="cancelled",
            title="Payment cancelled",
            message="Payment was cancelled by the operator. No charge was made.",
            status="failed",
        )
        try:
            await self.backend.cancel_payment(order_id)
        except ConflictingResult:
            # The backend holds a terminal result already; report that one instead.
            logger.warning("Cancel of %s rejected: gateway already settled the payment", order_id)
            settled = await self._handle_success(order_id)
            settled.warnings.insert(
                0,
                "The gateway had already confirmed this payment before it was cancelled; "
                "the customer has been charged.",
            )
            return settled
        except (NetworkError, SessionNotFound) as exc:
            logger.warning("Cancel of %s not recorded on backend: %s", order_id, exc.message)
            report.warnings.append("The cancellation could not be recorded on the payment server.")
        return report

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------
    async def _confirm_paid(self, order_id: str) -> Dict[str, Any]:
        """
        Authoritative status check. Raises UnverifiableOutcome unless paid.
        """
        try:
            order = await self.backend.get_order_status(order_id)
        except SessionNotFound as exc:
            raise UnverifiableOutcome(
                "The payment server does not know this order. The payment may have gone "
                "through; check the gateway records before charging again.",
                order_id=order_id,
            ) from exc

        status = order.get("status")
        if status != "paid":
            logger.warning("Success signal for %s but backend status is %s", order_id, status)
            raise UnverifiableOutcome(
                f"The gateway reported success but the payment server shows '{status}'. "
                "Check the payment manually before handing over the order.",
                order_id=order_id,
            )
        return order

    async def _log_print_job(self, order_id: str, receipt_data: Dict[str, Any]) -> None:
        try:
            await self.backend.log_print_job(order_id, receipt_data)
        except PaymentBridgeError as exc:
            # The receipt is already printed; the journal entry is optional.
            logger.warning("Print job for %s not logged: %s", order_id, exc.message)
