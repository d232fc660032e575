# payment_bridge/payment_service.py
"""
PaymentService

Backend side of the handshake. The FastAPI routes in app.py are thin wrappers
around this class.

Responsibilities:
- Validate a cart, price it, mint an order id and open a PaymentSession.
- Build the signed redirect document for a pending session.
- Turn gateway callbacks into OrderBroker results (verified approvals only).
- Record explicit cancellations from the POS.
- Keep a short journal of printed receipts reported by POS devices.
- Build the deep link that hands control back to the POS app.

This module does NOT:
- Deal with HTTP / FastAPI directly (that happens in app.py).
"""

from __future__ import annotations

import logging
import secrets
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Deque, Dict, List, Literal, Mapping, Optional, Tuple
from urllib.parse import urlencode

from pydantic import ValidationError as PydanticValidationError

from .callback_verifier import CallbackVerifier
from .config import Settings
from .errors import ConflictingResult, SessionNotFound, ValidationError, VerificationFailure
from .gateway_session import GatewaySessionBuilder, render_sandbox_page
from .models import GatewayCallback, InitiatePaymentRequest
from .order_broker import OrderBroker
from .payment_session import Customer, LineItem, PaymentSession

logger = logging.getLogger(__name__)


CallbackChannel = Literal["success", "fail"]


@dataclass
class CallbackOutcome:
    """
    What a callback did: the session as it now stands and where to send the app.
    """
    order_id: Optional[str]
    status: Optional[str]
    redirect_url: str


@dataclass
class PrintJob:
    id: str
    order_id: str
    receipt_data: Dict[str, Any]
    status: str
    printed_at: datetime


class PaymentService:
    """
    Create once at startup and reuse for all requests.
    """

    def __init__(
        self,
        config: Settings,
        broker: OrderBroker,
        builder: GatewaySessionBuilder,
        verifier: CallbackVerifier,
        print_journal_size: int = 100,
    ) -> None:
        self.config = config
        self.broker = broker
        self.builder = builder
        self.verifier = verifier
        self._print_jobs: Deque[PrintJob] = deque(maxlen=print_journal_size)

    # -------------------------------------------------------------------------
    # Initiation
    # -------------------------------------------------------------------------
    def initiate(self, req: InitiatePaymentRequest) -> Tuple[PaymentSession, str]:
        """
        Open a pending session for the cart and return it with the payment URL
        the POS app should load.
        """
        if not req.items:
            raise ValidationError("Cart is empty; add at least one item before paying.")

        items = [
            LineItem(id=i.id, name=i.name, price=i.price, quantity=i.quantity)
            for i in req.items
        ]
        amount = sum((item.subtotal for item in items), Decimal("0.00"))
        if amount <= 0:
            raise ValidationError("Order total must be greater than zero.")

        customer = Customer(
            name=(req.customer_info.name or "") if req.customer_info else "",
            email=(req.customer_info.email or "") if req.customer_info else "",
        )

        reuse = self.config.RETRY_ORDER_ID_POLICY == "reuse" and bool(req.order_id)
        order_id = req.order_id.strip() if reuse else self._mint_order_id()
        if not order_id:
            raise ValidationError("Order id must not be blank.")

        session = self.broker.create_session(
            order_id,
            amount,
            items,
            customer,
            replace_failed=reuse,
        )
        logger.info(
            "Payment initiated: %s - %s %s",
            order_id,
            session.formatted_amount,
            self.config.CURRENCY_LABEL,
        )
        return session, self.payment_url(order_id)

    def payment_url(self, order_id: str) -> str:
        base = self.config.PUBLIC_BASE_URL.rstrip("/")
        if self.config.GATEWAY_SANDBOX:
            return f"{base}/payment/sandbox/{order_id}"
        return f"{base}/payment/redirect/{order_id}"

    def redirect_document(self, order_id: str) -> str:
        """
        Signed, self-submitting form for a pending session.
        """
        session = self.broker.get_status(order_id)
        document = self.builder.build(session)
        self.broker.attach_signature(order_id, document.nonce, document.signature)
        logger.info("Redirect document issued for %s -> %s", order_id, document.endpoint)
        return document.html

    def sandbox_page(self, order_id: str) -> str:
        session = self.broker.get_status(order_id)
        return render_sandbox_page(
            session.order_id,
            session.formatted_amount,
            self.config.CURRENCY_LABEL,
        )

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------
    def handle_callback(self, form: Mapping[str, Any], channel: CallbackChannel) -> CallbackOutcome:
        """
        Apply a gateway callback.

        success channel: only a verified approval marks the session paid; a
        verified decline marks it failed; anything unverifiable leaves it
        pending.
        fail channel: marks the session failed.
        """
        try:
            callback = GatewayCallback.model_validate(dict(form))
        except PydanticValidationError:
            logger.warning("Malformed %s callback ignored: %s", channel, dict(form))
            return CallbackOutcome(order_id=None, status=None, redirect_url=self.app_link("fail"))

        order_id = callback.oid
        logger.info("Gateway %s callback for %s", channel, order_id)

        try:
            if channel == "success":
                session = self._apply_success_claim(callback)
            else:
                session = self._apply_failure(callback, reason=callback.err_msg or "declined")
        except SessionNotFound:
            logger.warning("Callback for unknown order %s", order_id)
            return CallbackOutcome(order_id=order_id, status=None, redirect_url=self.app_link("fail", order_id))

        link_outcome = "success" if session.status == "paid" else "fail"
        if session.status == "pending" and channel == "success":
            # Approval claimed but not verified: let the POS reconcile and
            # report the outcome as unverifiable.
            link_outcome = "success"
        return CallbackOutcome(
            order_id=order_id,
            status=session.status,
            redirect_url=self.app_link(link_outcome, order_id),
        )

    def cancel(self, order_id: str) -> PaymentSession:
        """
        Operator backed out of the payment view. A late approval can no longer
        move this session to paid.
        """
        return self.broker.mark_result(order_id, "failed", {"source": "pos"}, reason="cancelled")

    def status(self, order_id: str) -> PaymentSession:
        return self.broker.get_status(order_id)

    def app_link(self, outcome: str, order_id: Optional[str] = None) -> str:
        link = f"{self.config.APP_SCHEME}://payment/{outcome}"
        if order_id:
            link += "?" + urlencode({"orderId": order_id})
        return link

    # -------------------------------------------------------------------------
    # Print journal
    # -------------------------------------------------------------------------
    def record_print_job(self, order_id: str, receipt_data: Dict[str, Any]) -> PrintJob:
        job = PrintJob(
            id=f"PRINT_{int(time.time() * 1000)}_{secrets.token_hex(2)}",
            order_id=order_id,
            receipt_data=dict(receipt_data),
            status="printed",
            printed_at=datetime.now(timezone.utc),
        )
        self._print_jobs.append(job)
        logger.info("Print job %s logged for %s", job.id, order_id)
        return job

    def recent_print_jobs(self, limit: int = 10) -> List[PrintJob]:
        return list(self._print_jobs)[-limit:]

    @property
    def print_job_count(self) -> int:
        return len(self._print_jobs)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------
    def _mint_order_id(self) -> str:
        return f"ORD_{int(time.time() * 1000)}_{secrets.token_hex(3)}"

    def _apply_success_claim(self, callback: GatewayCallback) -> PaymentSession:
        try:
            verified = self.verifier.verify(callback)
        except VerificationFailure as exc:
            logger.warning("Unverified callback for %s left pending: %s", callback.oid, exc.message)
            return self.broker.get_status(callback.oid)

        if verified.outcome == "approved":
            return self._mark(callback.oid, "paid", callback.raw())
        if verified.outcome == "declined":
            return self._apply_failure(callback, reason=callback.err_msg or "declined")

        logger.warning(
            "Verified callback for %s is inconclusive (ProcReturnCode=%s Response=%s mdStatus=%s)",
            callback.oid,
            callback.proc_return_code,
            callback.response,
            callback.md_status,
        )
        return self.broker.get_status(callback.oid)

    def _apply_failure(self, callback: GatewayCallback, reason: str) -> PaymentSession:
        return self._mark(callback.oid, "failed", callback.raw(), reason=reason)

    def _mark(
        self,
        order_id: str,
        outcome: Literal["paid", "failed"],
        payload: Dict[str, Any],
        reason: Optional[str] = None,
    ) -> PaymentSession:
        try:
            return self.broker.mark_result(order_id, outcome, payload, reason=reason)
        except ConflictingResult:
            # Already logged by the broker; the original terminal state stands.
            return self.broker.get_status(order_id)
