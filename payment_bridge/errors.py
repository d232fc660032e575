# payment_bridge/errors.py
"""
Error taxonomy for the payment bridge.

Every error carries an operator-facing message. Errors that affect a payment
decision (ValidationError, VerificationFailure, ConflictingResult) are raised
at the OrderBroker / PaymentService boundary and never swallowed.
"""

from __future__ import annotations

from typing import Optional


class PaymentBridgeError(Exception):
    """Base class. `code` is the machine-readable name used in JSON bodies."""

    code = "payment_bridge_error"

    def __init__(self, message: str, *, order_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.order_id = order_id


class ValidationError(PaymentBridgeError):
    code = "validation_error"


class DuplicateOrder(PaymentBridgeError):
    code = "duplicate_order"


class SessionNotFound(PaymentBridgeError):
    code = "order_not_found"


class VerificationFailure(PaymentBridgeError):
    code = "verification_failure"


class ConflictingResult(PaymentBridgeError):
    code = "conflicting_result"


class NetworkError(PaymentBridgeError):
    code = "network_error"


class PrinterFault(PaymentBridgeError):
    """
    `started` tells whether any output reached the device before the fault.
    """

    code = "printer_fault"

    def __init__(self, message: str, *, order_id: Optional[str] = None, started: bool = False) -> None:
        super().__init__(message, order_id=order_id)
        self.started = started


class UnverifiableOutcome(PaymentBridgeError):
    code = "unverifiable_outcome"
