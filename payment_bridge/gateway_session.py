# payment_bridge/gateway_session.py
"""
Gateway Session Builder

Turns a pending PaymentSession into the self-submitting HTML document the POS
app loads in its embedded browser. The document posts the signed field set to
the hosted payment page:

    clientid, amount, currency, oid, okUrl, failUrl, rnd, hash,
    storetype, lang, email, BillToName

A fresh `rnd` nonce is drawn from `secrets` for every document, so a stale
signed request can never be replayed with a new one's hash.

Also renders the sandbox checkout page used when GATEWAY_SANDBOX is on.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from decimal import Decimal
from html import escape
from typing import Dict

from . import signer
from .config import Settings
from .errors import ValidationError
from .payment_session import PaymentSession


NONCE_BYTES = 16


@dataclass
class RedirectDocument:
    order_id: str
    endpoint: str
    nonce: str
    signature: str
    fields: Dict[str, str]
    html: str


def new_nonce() -> str:
    return secrets.token_hex(NONCE_BYTES)


class GatewaySessionBuilder:
    def __init__(self, config: Settings) -> None:
        self.config = config

    def build(self, session: PaymentSession) -> RedirectDocument:
        """
        Sign and render the redirect for `session`.
        """
        if not session.order_id or not session.order_id.strip():
            raise ValidationError("Order id is required to start a payment.")
        if not session.amount.is_finite() or session.amount <= Decimal("0"):
            raise ValidationError(
                f"Order {session.order_id} has an invalid amount ({session.amount}).",
                order_id=session.order_id,
            )

        cfg = self.config
        amount = session.formatted_amount
        rnd = new_nonce()
        signature = signer.sign(
            signer.request_signature_fields(
                cfg.GATEWAY_CLIENT_ID,
                session.order_id,
                amount,
                cfg.ok_url,
                cfg.fail_url,
                rnd,
            ),
            cfg.GATEWAY_STORE_KEY,
        )

        fields = {
            "clientid": cfg.GATEWAY_CLIENT_ID,
            "amount": amount,
            "currency": session.currency,
            "oid": session.order_id,
            "okUrl": cfg.ok_url,
            "failUrl": cfg.fail_url,
            "rnd": rnd,
            "hash": signature,
            "storetype": cfg.GATEWAY_STORE_TYPE,
            "lang": cfg.GATEWAY_LANG,
            "email": session.customer.email,
            "BillToName": session.customer.name,
        }
        endpoint = cfg.gateway_url

        return RedirectDocument(
            order_id=session.order_id,
            endpoint=endpoint,
            nonce=rnd,
            signature=signature,
            fields=fields,
            html=_render_form(endpoint, session.order_id, fields),
        )


def _render_form(endpoint: str, order_id: str, fields: Dict[str, str]) -> str:
    inputs = "\n".join(
        f'      <input type="hidden" name="{escape(name)}" value="{escape(value or "")}">'
        for name, value in fields.items()
    )
    return f"""<!DOCTYPE html>
<html>
  <head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Secure Payment - Redirecting...</title>
  </head>
  <body>
    <h2>Secure Payment</h2>
    <p>Redirecting to the payment gateway...</p>
    <p><small>Order: {escape(order_id)}</small></p>
    <form id="gatewayForm" action="{escape(endpoint)}" method="post">
{inputs}
    </form>
    <script>
      setTimeout(function () {{ document.getElementById('gatewayForm').submit(); }}, 2000);
    </script>
  </body>
</html>
"""


def render_sandbox_page(order_id: str, amount: str, currency_label: str) -> str:
    """
    Local stand-in for the hosted payment page.

    Its buttons only change the URL fragment to #success-<id> / #fail-<id>;
    the POS app's Result Interpreter picks those up from navigation events.
    """
    oid = escape(order_id)
    return f"""<!DOCTYPE html>
<html>
  <head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Sandbox Payment</title>
  </head>
  <body>
    <h2>Sandbox Payment</h2>
    <p>Order: {oid}</p>
    <p>Amount: {escape(amount)} {escape(currency_label)}</p>
    <button onclick="window.location.href = '#success-{oid}'">Approve</button>
    <button onclick="window.location.href = '#fail-{oid}'">Decline</button>
  </body>
</html>
"""
