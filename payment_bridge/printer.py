# payment_bridge/printer.py
"""
Printer Adapter

Uniform {initialize, status, print} contract over two backends:
- HardwarePrinter: drives a thermal printer through an injected driver.
- SimulatedPrinter: logs the formatted receipt and waits a moment.

The backend is chosen once, by `select_printer_backend`. Faults never leave
the adapter:
- a driver error before any output reached the device switches the adapter to
  simulation and the job is printed there;
- a driver error mid-job is reported as a failed PrintResult.

Jobs are serialized by a lock, so output of two receipts never interleaves.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional, Protocol

from .config import Settings, settings
from .errors import PrinterFault
from .receipt import ReceiptJob, format_receipt_text, qr_payload, sample_job

logger = logging.getLogger(__name__)


DeviceClass = Literal["hardware", "simulated"]
PaperLevel = Literal["ok", "low", "empty"]

ALIGN_LEFT = 0
ALIGN_CENTER = 1


@dataclass
class PrinterState:
    connected: bool
    paper: PaperLevel
    device_class: DeviceClass


@dataclass
class PrintResult:
    success: bool
    device_class: DeviceClass
    message: str = ""
    receipt_text: str = ""


class PrinterDriver(Protocol):
    """
    What the bridge needs from a thermal printer driver.
    """

    async def init(self) -> None: ...

    async def get_status(self) -> Dict[str, Any]: ...

    async def set_alignment(self, alignment: int) -> None: ...

    async def set_font_size(self, size: int) -> None: ...

    async def print_text(self, text: str) -> None: ...

    async def print_qr_code(self, data: str, size: int, error_level: int) -> None: ...

    async def line_wrap(self, lines: int) -> None: ...

    async def cut_paper(self) -> None: ...


class PrinterBackend(ABC):
    device_class: DeviceClass

    @abstractmethod
    async def initialize(self) -> bool:
        pass

    @abstractmethod
    async def status(self) -> PrinterState:
        pass

    @abstractmethod
    async def print(self, job: ReceiptJob) -> PrintResult:
        pass


class HardwarePrinter(PrinterBackend):
    device_class: DeviceClass = "hardware"

    def __init__(self, driver: PrinterDriver) -> None:
        self.driver = driver

    async def initialize(self) -> bool:
        await self.driver.init()
        return True

    async def status(self) -> PrinterState:
        raw = await self.driver.get_status()
        paper = raw.get("paperStatus") or raw.get("paper") or "ok"
        if paper not in ("ok", "low", "empty"):
            paper = "ok"
        return PrinterState(
            connected=bool(raw.get("isConnected", raw.get("connected", True))),
            paper=paper,
            device_class=self.device_class,
        )

    async def print(self, job: ReceiptJob) -> PrintResult:
        text = format_receipt_text(job)
        started = False
        try:
            await self.driver.set_alignment(ALIGN_CENTER)
            await self.driver.set_font_size(24)
            started = True
            await self.driver.print_text(job.store.name)
            await self.driver.line_wrap(1)

            await self.driver.set_alignment(ALIGN_LEFT)
            await self.driver.set_font_size(16)
            await self.driver.print_text(text)

            await self.driver.set_alignment(ALIGN_CENTER)
            await self.driver.print_qr_code(qr_payload(job), 200, 0)
            await self.driver.line_wrap(3)
            await self.driver.cut_paper()
        except Exception as exc:
            raise PrinterFault(
                f"Printer driver failed: {exc}",
                order_id=job.order_id,
                started=started,
            ) from exc

        return PrintResult(success=True, device_class=self.device_class, receipt_text=text)


class SimulatedPrinter(PrinterBackend):
    device_class: DeviceClass = "simulated"

    def __init__(self, delay_seconds: float = 1.0) -> None:
        self.delay_seconds = delay_seconds

    async def initialize(self) -> bool:
        return True

    async def status(self) -> PrinterState:
        return PrinterState(connected=True, paper="ok", device_class=self.device_class)

    async def print(self, job: ReceiptJob) -> PrintResult:
        text = format_receipt_text(job)
        logger.info("Simulated receipt for %s:\n%s", job.order_id, text)
        await asyncio.sleep(self.delay_seconds)
        return PrintResult(success=True, device_class=self.device_class, receipt_text=text)


async def select_printer_backend(
    driver: Optional[PrinterDriver],
    config: Settings = settings,
) -> PrinterBackend:
    """
    Hardware if a driver is present and initializes, simulation otherwise.
    """
    simulated = SimulatedPrinter(config.SIMULATED_PRINT_DELAY_SECONDS)
    if driver is None:
        logger.info("No printer driver available, using simulation")
        return simulated

    hardware = HardwarePrinter(driver)
    try:
        await hardware.initialize()
    except Exception as exc:
        logger.warning("Printer hardware not available, using simulation: %s", exc)
        return simulated

    logger.info("Printer hardware initialized")
    return hardware


class PrinterAdapter:
    """
    The only printer object the rest of the app talks to.
    """

    def __init__(self, driver: Optional[PrinterDriver] = None, config: Settings = settings) -> None:
        self.driver = driver
        self.config = config
        self.backend: Optional[PrinterBackend] = None
        self._lock = asyncio.Lock()

    @property
    def device_class(self) -> Optional[DeviceClass]:
        return self.backend.device_class if self.backend else None

    async def initialize(self) -> bool:
        if self.backend is None:
            self.backend = await select_printer_backend(self.driver, self.config)
        return True

    async def status(self) -> PrinterState:
        await self.initialize()
        try:
            return await self.backend.status()
        except Exception as exc:
            self._fall_back(f"status check failed: {exc}")
            return await self.backend.status()

    async def print(self, job: ReceiptJob) -> PrintResult:
        async with self._lock:
            await self.initialize()

            state = await self.status()
            if not state.connected:
                return PrintResult(False, state.device_class, "Printer not connected")
            if state.paper == "empty":
                return PrintResult(False, state.device_class, "Printer paper is empty")

            try:
                result = await self.backend.print(job)
            except PrinterFault as fault:
                if fault.started:
                    logger.error("Receipt for %s failed mid-print: %s", job.order_id, fault.message)
                    return PrintResult(False, "hardware", f"Receipt printing failed: {fault.message}")
                self._fall_back(fault.message)
                result = await self.backend.print(job)

            if state.paper == "low":
                result.message = "Printer paper is low"
            logger.info("Receipt printed for %s (%s)", job.order_id, result.device_class)
            return result

    async def print_test_receipt(self) -> PrintResult:
        return await self.print(sample_job(self.config))

    def _fall_back(self, reason: str) -> None:
        logger.warning("Switching printer to simulation: %s", reason)
        self.backend = SimulatedPrinter(self.config.SIMULATED_PRINT_DELAY_SECONDS)
