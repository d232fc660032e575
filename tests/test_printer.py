"""Tests for the printer adapter: backend selection, fallback and fault isolation."""

import asyncio
from decimal import Decimal

import pytest

from conftest import make_settings
from payment_bridge.payment_session import LineItem
from payment_bridge.printer import PrinterAdapter, SimulatedPrinter, select_printer_backend
from payment_bridge.receipt import build_receipt_job, format_receipt_text


class FakeDriver:
    """Records every call; `fail_on` names the call that raises."""

    def __init__(self, fail_on=None, fail_init=False, status=None):
        self.fail_on = fail_on
        self.fail_init = fail_init
        self._status = status or {"isConnected": True, "paperStatus": "ok"}
        self.calls = []

    async def _call(self, name, *args):
        await asyncio.sleep(0)
        if name == self.fail_on:
            raise RuntimeError(f"{name} failed")
        self.calls.append((name,) + args)

    async def init(self):
        if self.fail_init:
            raise RuntimeError("no printer service on this device")

    async def get_status(self):
        if self.fail_on == "get_status":
            raise RuntimeError("status failed")
        return self._status

    async def set_alignment(self, alignment):
        await self._call("set_alignment", alignment)

    async def set_font_size(self, size):
        await self._call("set_font_size", size)

    async def print_text(self, text):
        await self._call("print_text", text)

    async def print_qr_code(self, data, size, error_level):
        await self._call("print_qr_code", data)

    async def line_wrap(self, lines):
        await self._call("line_wrap", lines)

    async def cut_paper(self):
        await self._call("cut_paper")


@pytest.fixture()
def config():
    return make_settings()


def _job(config, order_id="ORD_1"):
    return build_receipt_job(
        order_id,
        [
            {"name": "Coffee", "price": "28.50", "quantity": 2},
            {"name": "Croissant", "price": Decimal("18.75"), "quantity": 1},
        ],
        config=config,
    )


async def test_no_driver_selects_simulation(config):
    backend = await select_printer_backend(None, config)
    assert isinstance(backend, SimulatedPrinter)


async def test_failed_detection_selects_simulation(config):
    backend = await select_printer_backend(FakeDriver(fail_init=True), config)
    assert backend.device_class == "simulated"


async def test_simulated_print_contains_order_items_and_total(config):
    adapter = PrinterAdapter(FakeDriver(fail_init=True), config)

    result = await adapter.print(_job(config))

    assert result.success is True
    assert result.device_class == "simulated"
    text = result.receipt_text
    assert "Order: ORD_1" in text
    assert "Coffee" in text and "Croissant" in text
    assert "2 x 28.50 TL = 57.00 TL" in text
    assert "1 x 18.75 TL = 18.75 TL" in text
    assert "TOTAL:        75.75 TL" in text


async def test_status_reports_device_class(config):
    adapter = PrinterAdapter(None, config)
    state = await adapter.status()

    assert state.connected is True
    assert state.paper == "ok"
    assert state.device_class == "simulated"


async def test_hardware_print_drives_the_driver(config):
    driver = FakeDriver()
    adapter = PrinterAdapter(driver, config)

    result = await adapter.print(_job(config))

    assert result.success is True
    assert result.device_class == "hardware"
    names = [c[0] for c in driver.calls]
    assert names[-1] == "cut_paper"
    assert ("print_qr_code", "order:ORD_1:75.75") in driver.calls


async def test_fault_before_output_falls_back_to_simulation(config):
    adapter = PrinterAdapter(FakeDriver(fail_on="set_alignment"), config)

    result = await adapter.print(_job(config))

    assert result.success is True
    assert result.device_class == "simulated"
    assert adapter.device_class == "simulated"


async def test_fault_mid_job_is_reported_not_raised(config):
    driver = FakeDriver(fail_on="print_qr_code")
    adapter = PrinterAdapter(driver, config)

    result = await adapter.print(_job(config))

    assert result.success is False
    assert "print_qr_code failed" in result.message


async def test_status_fault_falls_back_to_simulation(config):
    adapter = PrinterAdapter(FakeDriver(fail_on="get_status"), config)

    state = await adapter.status()

    assert state.device_class == "simulated"


async def test_empty_paper_refuses_job(config):
    adapter = PrinterAdapter(FakeDriver(status={"isConnected": True, "paperStatus": "empty"}), config)

    result = await adapter.print(_job(config))

    assert result.success is False
    assert result.message == "Printer paper is empty"


async def test_low_paper_prints_with_warning(config):
    adapter = PrinterAdapter(FakeDriver(status={"isConnected": True, "paperStatus": "low"}), config)

    result = await adapter.print(_job(config))

    assert result.success is True
    assert result.message == "Printer paper is low"


async def test_disconnected_printer_refuses_job(config):
    adapter = PrinterAdapter(FakeDriver(status={"isConnected": False, "paperStatus": "ok"}), config)

    result = await adapter.print(_job(config))

    assert result.success is False
    assert result.message == "Printer not connected"


async def test_concurrent_jobs_do_not_interleave(config):
    driver = FakeDriver()
    adapter = PrinterAdapter(driver, config)

    results = await asyncio.gather(
        adapter.print(_job(config, "ORD_A")),
        adapter.print(_job(config, "ORD_B")),
    )

    assert all(r.success for r in results)
    cuts = [i for i, c in enumerate(driver.calls) if c[0] == "cut_paper"]
    assert len(cuts) == 2
    first_job = driver.calls[: cuts[0] + 1]
    second_job = driver.calls[cuts[0] + 1:]
    assert all("ORD_B" not in str(c) for c in first_job)
    assert all("ORD_A" not in str(c) for c in second_job)


async def test_print_test_receipt(config):
    result = await PrinterAdapter(None, config).print_test_receipt()

    assert result.success is True
    assert "Test Croissant" in result.receipt_text
    assert "TOTAL:        55.00 TL" in result.receipt_text


def test_receipt_tax_is_included_in_total(config):
    job = _job(config)

    assert job.total == Decimal("75.75")
    # 75.75 - 75.75 / 1.18
    assert job.tax == Decimal("11.56")
    assert "VAT incl. (18%): 11.56 TL" in format_receipt_text(job)


def test_session_and_receipt_round_line_totals_alike(config):
    item = {"id": "1", "name": "Bulk Olives", "price": Decimal("10.005"), "quantity": 1}

    line = LineItem(id="1", name="Bulk Olives", price=item["price"], quantity=1)
    job = build_receipt_job("ORD_1", [item], config=config)

    assert line.subtotal == Decimal("10.01")
    assert job.total == line.subtotal
