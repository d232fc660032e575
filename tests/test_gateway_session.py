"""Tests for the redirect document builder."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from conftest import CLIENT_ID, STORE_KEY, make_settings
from payment_bridge import signer
from payment_bridge.errors import ValidationError
from payment_bridge.gateway_session import GatewaySessionBuilder, render_sandbox_page
from payment_bridge.payment_session import Customer, PaymentSession


def _session(order_id="ORD_1", amount=Decimal("57.00"), customer=None):
    return PaymentSession(
        order_id=order_id,
        amount=amount,
        currency="949",
        items=[],
        customer=customer or Customer(name="Ayse", email="ayse@example.com"),
        created_at=datetime.now(timezone.utc),
    )


def test_document_posts_signed_fields_to_test_endpoint():
    config = make_settings(GATEWAY_TEST_MODE=True)
    doc = GatewaySessionBuilder(config).build(_session())

    assert doc.endpoint == config.GATEWAY_TEST_URL
    assert f'action="{config.GATEWAY_TEST_URL}"' in doc.html
    assert doc.fields["amount"] == "57.00"
    assert doc.fields["oid"] == "ORD_1"
    assert doc.fields["storetype"] == "3d_pay"
    assert doc.fields["okUrl"] == "http://testserver/payment/callback/success"
    assert doc.fields["failUrl"] == "http://testserver/payment/callback/fail"

    expected = signer.sign(
        [CLIENT_ID, "ORD_1", "57.00", config.ok_url, config.fail_url, doc.nonce],
        STORE_KEY,
    )
    assert doc.signature == expected
    assert f'name="hash" value="{expected}"' in doc.html
    assert "gatewayForm" in doc.html and ".submit()" in doc.html


def test_production_endpoint_comes_from_configuration():
    config = make_settings(GATEWAY_TEST_MODE=False)
    doc = GatewaySessionBuilder(config).build(_session())

    assert doc.endpoint == config.GATEWAY_PROD_URL


def test_fresh_nonce_per_document():
    builder = GatewaySessionBuilder(make_settings())
    session = _session()

    nonces = {builder.build(session).nonce for _ in range(20)}

    assert len(nonces) == 20


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1.00"), Decimal("NaN"), Decimal("Infinity")])
def test_invalid_amount_rejected(amount):
    with pytest.raises(ValidationError):
        GatewaySessionBuilder(make_settings()).build(_session(amount=amount))


def test_blank_order_id_rejected():
    with pytest.raises(ValidationError):
        GatewaySessionBuilder(make_settings()).build(_session(order_id="  "))


def test_customer_fields_are_escaped():
    session = _session(customer=Customer(name='"><script>x</script>', email=""))
    doc = GatewaySessionBuilder(make_settings()).build(session)

    assert "<script>x</script>" not in doc.html
    assert "&lt;script&gt;" in doc.html


def test_sandbox_page_links_to_result_fragments():
    html = render_sandbox_page("ORD_1", "57.00", "TL")

    assert "#success-ORD_1" in html
    assert "#fail-ORD_1" in html
    assert "57.00 TL" in html
