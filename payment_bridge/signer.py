# payment_bridge/signer.py
"""
Signer

Computes the gateway hash over an ordered field list and a shared secret:

    base64( sha1( field_1 + field_2 + ... + field_n + secret ) )

The same function authors outgoing requests and re-computes hashes over
incoming callback fields. No randomness here: freshness comes from the `rnd`
nonce, which is one of the signed fields.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from typing import List, Sequence


def sign(fields: Sequence[str], secret: str) -> str:
    """
    Signature over `fields` in the given order, followed by `secret`.
    """
    hash_string = "".join(fields) + secret
    digest = hashlib.sha1(hash_string.encode("utf-8")).digest()
    return base64.b64encode(digest).decode("ascii")


def verify(fields: Sequence[str], secret: str, claimed: str) -> bool:
    """
    Recompute the signature and compare it with `claimed` in constant time.
    """
    if not claimed:
        return False
    expected = sign(fields, secret)
    return hmac.compare_digest(expected.encode("ascii"), claimed.strip().encode("ascii", "replace"))


def request_signature_fields(
    client_id: str,
    order_id: str,
    amount: str,
    ok_url: str,
    fail_url: str,
    rnd: str,
) -> List[str]:
    """
    Field order for the outgoing redirect request:
    clientid, oid, amount, okUrl, failUrl, rnd (the store key is appended by `sign`).
    """
    return [client_id, order_id, amount, ok_url, fail_url, rnd]
