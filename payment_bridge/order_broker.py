# payment_bridge/order_broker.py
"""
OrderBroker

In-memory store of PaymentSessions keyed by order id, and the single place
where gateway outcomes are written.

Not persistent across restarts: the authoritative order record lives in the
external order repository, this store only tracks in-flight attempts.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .errors import ConflictingResult, DuplicateOrder, SessionNotFound
from .payment_session import Customer, LineItem, PaymentSession, SessionStatus

logger = logging.getLogger(__name__)


class OrderBroker:
    """
    Owns every PaymentSession. Create once at startup and share it.

    All reads return copies and all writes go through the methods below,
    serialized by one lock.
    """

    def __init__(self, currency: str) -> None:
        self.currency = currency
        self._sessions: Dict[str, PaymentSession] = {}
        # Failed attempts replaced under the "reuse" order id policy
        self._superseded: Dict[str, List[PaymentSession]] = {}
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------
    def create_session(
        self,
        order_id: str,
        amount: Decimal,
        items: List[LineItem],
        customer: Optional[Customer] = None,
        *,
        replace_failed: bool = False,
    ) -> PaymentSession:
        """
        Register a new pending session.

        Raises DuplicateOrder if the id is already tracked, unless
        `replace_failed` is set and the tracked attempt has failed.
        """
        with self._lock:
            existing = self._sessions.get(order_id)
            if existing is not None:
                if not (replace_failed and existing.status == "failed"):
                    raise DuplicateOrder(
                        f"Order {order_id} already has a {existing.status} payment session; "
                        "start a new order id instead of retrying.",
                        order_id=order_id,
                    )
                self._superseded.setdefault(order_id, []).append(existing)
                logger.info("Retrying failed order %s under the same id", order_id)

            session = PaymentSession(
                order_id=order_id,
                amount=amount,
                currency=self.currency,
                items=list(items),
                customer=customer or Customer(),
                created_at=datetime.now(timezone.utc),
            )
            self._sessions[order_id] = session
            logger.info("Payment session created: %s - %s", order_id, session.formatted_amount)
            return session.snapshot()

    def get_status(self, order_id: str) -> PaymentSession:
        return self.snapshot(order_id)

    def snapshot(self, order_id: str) -> PaymentSession:
        """
        Detached copy of a session; changing it never touches the broker.
        """
        with self._lock:
            return self._get(order_id).snapshot()

    def attach_signature(self, order_id: str, nonce: str, signature: str) -> PaymentSession:
        """
        Record the handshake of the latest redirect built for a pending session.
        """
        with self._lock:
            session = self._get(order_id)
            if session.is_terminal:
                raise ConflictingResult(
                    f"Order {order_id} is already {session.status}; no new redirect can be issued.",
                    order_id=order_id,
                )
            session.nonce = nonce
            session.signature = signature
            return session.snapshot()

    def mark_result(
        self,
        order_id: str,
        outcome: SessionStatus,
        raw_payload: Optional[Dict[str, Any]] = None,
        *,
        reason: Optional[str] = None,
    ) -> PaymentSession:
        """
        Move a pending session to its terminal state.

        - Same terminal outcome again: no-op, returns the session unchanged.
        - Different outcome after a terminal state: ConflictingResult, state kept.
        """
        if outcome not in ("paid", "failed"):
            raise ValueError(f"Not a terminal outcome: {outcome!r}")

        with self._lock:
            session = self._get(order_id)

            if session.is_terminal:
                if session.status == outcome:
                    logger.info("Duplicate %s result for %s ignored", outcome, order_id)
                    return session.snapshot()
                logger.warning(
                    "Conflicting result for %s: already %s, got %s (reason=%s)",
                    order_id,
                    session.status,
                    outcome,
                    reason,
                )
                raise ConflictingResult(
                    f"Order {order_id} is already {session.status}; the {outcome} result was rejected.",
                    order_id=order_id,
                )

            session.status = outcome
            session.gateway_payload = dict(raw_payload or {})
            if outcome == "paid":
                session.paid_at = datetime.now(timezone.utc)
                logger.info("Payment confirmed: %s", order_id)
            else:
                session.failure_reason = reason or "declined"
                logger.info("Payment failed: %s (%s)", order_id, session.failure_reason)
            return session.snapshot()

    def list_sessions(self) -> List[PaymentSession]:
        with self._lock:
            return [s.snapshot() for s in self._sessions.values()]

    def superseded_attempts(self, order_id: str) -> List[PaymentSession]:
        with self._lock:
            return [s.snapshot() for s in self._superseded.get(order_id, [])]

    def stats(self) -> Dict[str, int]:
        """
        Session counts by status, for the health probe.
        """
        counts = {"pending": 0, "paid": 0, "failed": 0}
        with self._lock:
            for session in self._sessions.values():
                counts[session.status] += 1
        return counts

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------
    def _get(self, order_id: str) -> PaymentSession:
        session = self._sessions.get(order_id)
        if session is None:
            raise SessionNotFound(f"Order {order_id} not found", order_id=order_id)
        return session
