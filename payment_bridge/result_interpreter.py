# payment_bridge/result_interpreter.py
"""
Result Interpreter

Watches the two places a gateway result can show up on the POS device:
- the embedded browser's navigation events (URL fragment #success-<id> /
  #fail-<id>, or a redirect to the app scheme)
- OS deep links into the app (<scheme>://payment/success?orderId=...)

Both sources only enqueue raw signals. One asyncio task drains the inbox,
classifies each signal and hands the first conclusive result per order id to
the handler. Later signals for that order are dropped.

Operator cancellation is claimed immediately (no queueing), so a gateway
signal already in the inbox can no longer win the order.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections import OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal, Optional, Set, Tuple, Union
from urllib.parse import parse_qs, urlsplit

from .config import settings

logger = logging.getLogger(__name__)


Outcome = Literal["success", "failure", "cancelled"]
Source = Literal["navigation", "deep_link", "operator"]

FRAGMENT_PATTERN = re.compile(r"^(success|fail)-(.+)$")


@dataclass
class NavigationEvent:
    """
    One navigation state change reported by the embedded browser.
    """
    url: str
    loading: bool = False


@dataclass
class ClassifiedResult:
    order_id: str
    outcome: Outcome
    source: Source


@dataclass
class _RawSignal:
    source: Source
    url: str


Handler = Callable[[ClassifiedResult], Awaitable[None]]


def classify_url(url: str, scheme: str) -> Optional[Tuple[Outcome, str]]:
    """
    Returns (outcome, order_id) for a conclusive URL, None for anything else.
    """
    if not url:
        return None

    for path, outcome in (("payment/success", "success"), ("payment/fail", "failure")):
        prefix = f"{scheme}://{path}"
        if url.startswith(prefix):
            rest = url[len(prefix):]
            if rest and rest[0] not in "?#/":
                return None
            order_id = (parse_qs(urlsplit(url).query).get("orderId") or [""])[0].strip()
            if not order_id:
                return None
            return outcome, order_id

    match = FRAGMENT_PATTERN.match(urlsplit(url).fragment)
    if match:
        kind, order_id = match.groups()
        order_id = order_id.strip()
        if order_id:
            return ("success" if kind == "success" else "failure"), order_id

    return None


class ResultInterpreter:
    """
    Single consumer of navigation and deep-link signals.

    Create one per POS app process; `watch` every order id a payment view is
    opened for.
    """

    def __init__(
        self,
        handler: Handler,
        scheme: Optional[str] = None,
        max_handled: int = 500,
    ) -> None:
        self.handler = handler
        self.scheme = scheme or settings.APP_SCHEME
        self.max_handled = max_handled
        self._inbox: "asyncio.Queue[Union[_RawSignal, ClassifiedResult]]" = asyncio.Queue()
        self._watched: Set[str] = set()
        # Oldest first; trimmed to max_handled
        self._handled: "OrderedDict[str, Outcome]" = OrderedDict()
        self._task: Optional[asyncio.Task] = None

    # -------------------------------------------------------------------------
    # Sources
    # -------------------------------------------------------------------------
    def watch(self, order_id: str) -> None:
        if order_id in self._handled:
            logger.warning("Order %s already handled, not watching again", order_id)
            return
        self._watched.add(order_id)

    def on_navigation(self, event: NavigationEvent) -> None:
        # Intermediate redirects are not conclusive; wait for the load to finish.
        if event.loading:
            return
        self._inbox.put_nowait(_RawSignal(source="navigation", url=event.url))

    def should_start_load(self, url: str) -> bool:
        """
        Browser hook called before loading `url`. App-scheme URIs are routed
        to the deep-link channel and must not be loaded as a page.
        """
        if url.startswith(f"{self.scheme}://"):
            logger.info("Intercepted app link in browser: %s", url)
            self.on_deep_link(url)
            return False
        return True

    def on_deep_link(self, url: str) -> None:
        self._inbox.put_nowait(_RawSignal(source="deep_link", url=url))

    def cancel(self, order_id: str) -> bool:
        """
        Operator closed the payment view. Returns False if a result for the
        order was already acted upon.
        """
        if not self._claim(order_id, "cancelled"):
            return False
        logger.info("Payment view for %s cancelled by operator", order_id)
        self._inbox.put_nowait(ClassifiedResult(order_id=order_id, outcome="cancelled", source="operator"))
        return True

    # -------------------------------------------------------------------------
    # Consumer
    # -------------------------------------------------------------------------
    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def drain(self) -> None:
        """
        Wait until every signal enqueued so far has been processed.
        """
        await self._inbox.join()

    async def run(self) -> None:
        while True:
            item = await self._inbox.get()
            try:
                result = self._interpret(item)
                if result is not None:
                    await self.handler(result)
            except Exception:
                logger.exception("Result handler failed for %s", item)
            finally:
                self._inbox.task_done()

    def handled_outcome(self, order_id: str) -> Optional[Outcome]:
        return self._handled.get(order_id)

    def forget(self, order_id: str) -> None:
        """
        Drop everything known about an order. Signals for it that arrive later
        are ignored because it is no longer watched.
        """
        self._watched.discard(order_id)
        self._handled.pop(order_id, None)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------
    def _interpret(self, item: Union[_RawSignal, ClassifiedResult]) -> Optional[ClassifiedResult]:
        if isinstance(item, ClassifiedResult):
            # Already claimed by cancel()
            return item

        classified = classify_url(item.url, self.scheme)
        if classified is None:
            logger.debug("Inconclusive %s signal: %s", item.source, item.url)
            return None

        outcome, order_id = classified
        if not self._claim(order_id, outcome):
            logger.info("Dropped %s %s signal for %s", item.source, outcome, order_id)
            return None

        logger.info("Payment %s for %s (via %s)", outcome, order_id, item.source)
        return ClassifiedResult(order_id=order_id, outcome=outcome, source=item.source)

    def _claim(self, order_id: str, outcome: Outcome) -> bool:
        """
        Check-and-set of the per-order handled marker. No await between the
        check and the set.
        """
        if order_id not in self._watched or order_id in self._handled:
            return False
        self._handled[order_id] = outcome
        self._watched.discard(order_id)
        while len(self._handled) > self.max_handled:
            self._handled.popitem(last=False)
        return True
