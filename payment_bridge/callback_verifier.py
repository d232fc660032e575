# payment_bridge/callback_verifier.py
"""
Callback verification

A callback is a claim, not a fact. It is only allowed to move a session to
`paid` when:
- the hash recomputed over the configured callback fields matches HASH, and
- ProcReturnCode == "00", Response == "Approved" and mdStatus == "1".

The callback hash field list comes from configuration. When it is empty no
callback can verify and every success claim stays inconclusive.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Literal, Sequence

from . import signer
from .errors import VerificationFailure
from .models import GatewayCallback

logger = logging.getLogger(__name__)


ClaimedOutcome = Literal["approved", "declined", "unknown"]

APPROVED_RETURN_CODE = "00"
APPROVED_RESPONSE = "Approved"
AUTHENTICATED_MD_STATUS = "1"
DECLINED_RESPONSES = ("Declined", "Error")


def classify_outcome(callback: GatewayCallback) -> ClaimedOutcome:
    """
    What the callback claims happened, before any hash check.

    All three success flags must hold at once; a partial match is never
    `approved`.
    """
    if (
        callback.proc_return_code == APPROVED_RETURN_CODE
        and callback.response == APPROVED_RESPONSE
        and callback.md_status == AUTHENTICATED_MD_STATUS
    ):
        return "approved"
    if callback.response in DECLINED_RESPONSES:
        return "declined"
    if callback.proc_return_code and callback.proc_return_code != APPROVED_RETURN_CODE:
        return "declined"
    return "unknown"


@dataclass
class VerifiedResult:
    order_id: str
    outcome: ClaimedOutcome


class CallbackVerifier:
    def __init__(self, hash_fields: Sequence[str], store_key: str) -> None:
        self.hash_fields: List[str] = list(hash_fields)
        self.store_key = store_key

    @property
    def configured(self) -> bool:
        return bool(self.hash_fields)

    def expected_hash(self, callback: GatewayCallback) -> str:
        raw = callback.raw()
        values = [str(raw.get(name, "")) for name in self.hash_fields]
        return signer.sign(values, self.store_key)

    def verify(self, callback: GatewayCallback) -> VerifiedResult:
        """
        Raises VerificationFailure when the hash cannot be confirmed.
        """
        if not self.configured:
            logger.warning(
                "Callback for %s not verifiable: GATEWAY_CALLBACK_HASH_FIELDS is not configured",
                callback.oid,
            )
            raise VerificationFailure(
                "Callback hash scheme is not configured; the payment could not be verified.",
                order_id=callback.oid,
            )

        raw = callback.raw()
        missing = [name for name in self.hash_fields if name not in raw]
        if missing or not callback.hash:
            logger.warning(
                "Callback for %s missing verification fields: %s",
                callback.oid,
                missing or ["HASH"],
            )
            raise VerificationFailure(
                "Callback is missing verification fields; the payment could not be verified.",
                order_id=callback.oid,
            )

        values = [str(raw[name]) for name in self.hash_fields]
        if not signer.verify(values, self.store_key, callback.hash):
            logger.warning("Callback hash mismatch for %s", callback.oid)
            raise VerificationFailure(
                "Callback hash does not match; the payment could not be verified.",
                order_id=callback.oid,
            )

        return VerifiedResult(order_id=callback.oid, outcome=classify_outcome(callback))
