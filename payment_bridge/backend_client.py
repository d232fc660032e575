# payment_bridge/backend_client.py
"""
Backend Client

Everything the POS app asks of the payment bridge backend:
- initiate_payment
- get_order_status
- cancel_payment
- log_print_job
- check_health

Transport errors, timeouts and 5xx answers are retried a bounded number of
times with exponential backoff, then raised as NetworkError. 4xx answers are
not retried: they carry a definite answer from the backend.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from .config import Settings, settings
from .errors import ConflictingResult, NetworkError, SessionNotFound, ValidationError

logger = logging.getLogger(__name__)


class BackendClient:
    def __init__(
        self,
        config: Settings = settings,
        *,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep=asyncio.sleep,
    ) -> None:
        self.base_url = (base_url or config.BACKEND_BASE_URL).rstrip("/")
        self.timeout = config.HTTP_TIMEOUT_SECONDS
        self.max_attempts = max(1, config.HTTP_MAX_ATTEMPTS)
        self.backoff = config.HTTP_BACKOFF_SECONDS
        self._transport = transport
        self._sleep = sleep

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                    resp = await client.request(method, url, json=payload)
                if resp.status_code >= 500:
                    raise httpx.HTTPStatusError(
                        f"Server error {resp.status_code}", request=resp.request, response=resp
                    )
                return self._decode(resp)
            except (httpx.TransportError, httpx.HTTPStatusError) as exc:
                last_error = exc
                logger.warning(
                    "%s %s failed (attempt %d/%d): %s",
                    method,
                    path,
                    attempt,
                    self.max_attempts,
                    exc,
                )
                if attempt < self.max_attempts:
                    await self._sleep(self.backoff * (2 ** (attempt - 1)))

        raise NetworkError(
            f"Backend unreachable after {self.max_attempts} attempts ({last_error}).",
        )

    def _decode(self, resp: httpx.Response) -> Dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            data = {"raw": resp.text}

        if resp.status_code < 400:
            return data

        message = (data.get("error") if isinstance(data, dict) else None) or f"HTTP {resp.status_code}"
        if resp.status_code == 404:
            raise SessionNotFound(message)
        if resp.status_code == 409:
            raise ConflictingResult(message)
        raise ValidationError(message)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------
    async def initiate_payment(
        self,
        items: List[Dict[str, Any]],
        customer_info: Optional[Dict[str, Any]] = None,
        order_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"items": items, "customerInfo": customer_info}
        if order_id:
            payload["orderId"] = order_id
        return await self._request("POST", "/payment/initiate", payload)

    async def get_order_status(self, order_id: str) -> Dict[str, Any]:
        """
        Returns the `order` object of the status endpoint.
        """
        data = await self._request("GET", f"/payment/{order_id}/status")
        return data["order"]

    async def cancel_payment(self, order_id: str) -> Dict[str, Any]:
        data = await self._request("POST", f"/payment/{order_id}/cancel")
        return data["order"]

    async def log_print_job(self, order_id: str, receipt_data: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request(
            "POST",
            "/payment/print-jobs",
            {"orderId": order_id, "receiptData": receipt_data},
        )

    async def check_health(self) -> bool:
        try:
            data = await self._request("GET", "/health")
        except NetworkError:
            return False
        return data.get("status") == "ok"
