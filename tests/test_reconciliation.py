"""End-to-end tests of the POS flow: interpreter -> reconciliation -> printer -> repository.

The backend is the real app, reached through httpx.ASGITransport.
"""

import httpx
import pytest

from conftest import make_settings, signed_callback
from payment_bridge.backend_client import BackendClient
from payment_bridge.order_repository import InMemoryOrderRepository
from payment_bridge.printer import PrinterAdapter
from payment_bridge.reconciliation import PendingPayment, ReceiptDriver
from payment_bridge.result_interpreter import NavigationEvent, ResultInterpreter

ORDER_DOC = {
    "customerName": "Ayse",
    "status": "pending",
    "paymentStatus": "unpaid",
    "total": 57.0,
    "items": [{"id": "1", "name": "Coffee", "price": 28.50, "quantity": 2}],
}


class BrokenPrinterDriver:
    async def init(self):
        return None

    async def get_status(self):
        return {"isConnected": True, "paperStatus": "ok"}

    async def set_alignment(self, alignment):
        return None

    async def set_font_size(self, size):
        return None

    async def print_text(self, text):
        raise RuntimeError("paper jam")

    async def print_qr_code(self, data, size, error_level):
        return None

    async def line_wrap(self, lines):
        return None

    async def cut_paper(self):
        return None


@pytest.fixture()
def repository():
    return InMemoryOrderRepository({"order-1": dict(ORDER_DOC)})


@pytest.fixture()
def driver(asgi_backend, repository, config):
    return ReceiptDriver(asgi_backend, PrinterAdapter(None, config), repository, config)


async def _gateway_posts(app, path, body):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as gw:
        return await gw.post(path, data=body, follow_redirects=False)


async def _start(driver, repository):
    order = await repository.get_order("order-1")
    return await driver.start_payment(order, customer_email="ayse@example.com")


async def test_start_payment_opens_backend_session(driver, repository, service):
    pending = await _start(driver, repository)

    assert pending.order_ref == "order-1"
    assert pending.payment_url.endswith(f"/payment/redirect/{pending.gateway_order_id}")
    session = service.status(pending.gateway_order_id)
    assert session.status == "pending"
    assert str(session.amount) == "57.00"
    assert driver.attempt_status(pending.gateway_order_id) == "pending"


async def test_confirmed_success_prints_and_updates_order(app, driver, repository, service):
    pending = await _start(driver, repository)
    oid = pending.gateway_order_id
    await _gateway_posts(app, "/payment/callback/success", signed_callback(oid))

    report = await driver.handle(oid, "success")

    assert report.kind == "paid"
    assert report.payment_succeeded
    assert "57.00 TL" in report.message
    text = report.print_result.receipt_text
    assert f"Order: {oid}" in text
    assert "2 x 28.50 TL = 57.00 TL" in text
    order = await repository.get_order("order-1")
    assert (order.status, order.payment_status, order.gateway_order_id) == ("confirmed", "paid", oid)
    assert order.paid_at is not None
    assert [job.order_id for job in service.recent_print_jobs()] == [oid]


async def test_success_signal_without_callback_is_unverifiable(driver, repository):
    pending = await _start(driver, repository)

    report = await driver.handle(pending.gateway_order_id, "success")

    assert report.kind == "unverifiable"
    assert not report.payment_succeeded
    assert "pending" in report.message
    assert report.print_result is None
    order = await repository.get_order("order-1")
    assert order.payment_status == "unpaid"


async def test_forged_callback_then_success_signal_is_unverifiable(app, driver, repository):
    pending = await _start(driver, repository)
    body = signed_callback(pending.gateway_order_id)
    body["HASH"] = "forged"
    await _gateway_posts(app, "/payment/callback/success", body)

    report = await driver.handle(pending.gateway_order_id, "success")

    assert report.kind == "unverifiable"


async def test_unreachable_backend_is_reported_not_assumed(repository, config):
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    async def no_sleep(delay):
        return None

    backend = BackendClient(config, transport=httpx.MockTransport(handler), sleep=no_sleep)
    driver = ReceiptDriver(backend, PrinterAdapter(None, config), repository, config)
    driver.track(PendingPayment(gateway_order_id="ORD_1", payment_url="http://x", items=[], order_ref="order-1"))

    report = await driver.handle("ORD_1", "success")

    assert report.kind == "verify_error"
    assert "contact support" in report.message
    assert (await repository.get_order("order-1")).payment_status == "unpaid"


async def test_print_failure_is_a_warning_not_a_payment_failure(app, asgi_backend, repository, config):
    driver = ReceiptDriver(asgi_backend, PrinterAdapter(BrokenPrinterDriver(), config), repository, config)
    pending = await _start(driver, repository)
    await _gateway_posts(app, "/payment/callback/success", signed_callback(pending.gateway_order_id))

    report = await driver.handle(pending.gateway_order_id, "success")

    assert report.kind == "paid_print_failed"
    assert report.payment_succeeded
    assert "manual receipt" in report.message
    assert (await repository.get_order("order-1")).payment_status == "paid"


async def test_failure_does_not_print_or_touch_order(driver, repository):
    pending = await _start(driver, repository)

    report = await driver.handle(pending.gateway_order_id, "failure")

    assert report.kind == "failed"
    assert report.print_result is None
    assert driver.attempt_status(pending.gateway_order_id) == "failed"
    assert (await repository.get_order("order-1")).payment_status == "unpaid"


async def test_cancel_is_recorded_on_backend(driver, repository, service):
    pending = await _start(driver, repository)

    report = await driver.handle(pending.gateway_order_id, "cancelled")

    assert report.kind == "cancelled"
    assert report.warnings == []
    assert service.status(pending.gateway_order_id).status == "failed"
    assert (await repository.get_order("order-1")).payment_status == "unpaid"


async def test_cancel_after_gateway_confirmed_reports_the_charge(app, driver, repository, service):
    pending = await _start(driver, repository)
    oid = pending.gateway_order_id
    await _gateway_posts(app, "/payment/callback/success", signed_callback(oid))

    report = await driver.handle(oid, "cancelled")

    assert report.kind == "paid"
    assert report.payment_succeeded
    assert "No charge was made" not in report.message
    assert "already confirmed" in report.warnings[0]
    assert report.print_result.success
    assert service.status(oid).status == "paid"
    assert driver.attempt_status(oid) == "paid"
    order = await repository.get_order("order-1")
    assert order.payment_status == "paid"
    assert order.gateway_order_id == oid


async def test_two_channels_reconcile_once(app, driver, repository):
    pending = await _start(driver, repository)
    oid = pending.gateway_order_id
    gateway = await _gateway_posts(app, "/payment/callback/success", signed_callback(oid))
    deep_link = gateway.headers["location"]

    interpreter = ResultInterpreter(driver.on_result, scheme=make_settings().APP_SCHEME)
    interpreter.watch(oid)
    interpreter.on_navigation(NavigationEvent(f"http://testserver/payment/sandbox/{oid}#success-{oid}"))
    assert interpreter.should_start_load(deep_link) is False
    interpreter.start()
    await interpreter.drain()
    await interpreter.stop()

    assert [r.kind for r in driver.reports] == ["paid"]


async def test_cancelled_session_not_resurrected_by_late_deep_link(app, driver, repository, service):
    pending = await _start(driver, repository)
    oid = pending.gateway_order_id

    interpreter = ResultInterpreter(driver.on_result)
    interpreter.watch(oid)
    interpreter.start()
    interpreter.cancel(oid)
    await interpreter.drain()

    resp = await _gateway_posts(app, "/payment/callback/success", signed_callback(oid))
    interpreter.on_deep_link(resp.headers["location"])
    await interpreter.drain()
    await interpreter.stop()

    assert [r.kind for r in driver.reports] == ["cancelled"]
    assert service.status(oid).status == "failed"
    assert (await repository.get_order("order-1")).payment_status == "unpaid"
