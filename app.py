# app.py
"""
FastAPI entrypoint for the payment bridge backend.

Exposes:
- POST /payment/initiate                → open a payment session for a cart
- GET  /payment/redirect/{order_id}     → signed self-submitting gateway form
- GET  /payment/sandbox/{order_id}      → local mock gateway (sandbox mode only)
- POST /payment/callback/success|fail   → gateway callbacks
- GET  /payment/{order_id}/status       → authoritative session status
- POST /payment/{order_id}/cancel       → operator cancelled the payment view
- POST /payment/print-jobs              → POS reports a printed receipt
- GET  /payment/print-jobs              → last printed receipts
- GET  /health                          → liveness probe

Session state lives in one in-process OrderBroker; it is rebuilt empty on
every start.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse

from payment_bridge.callback_verifier import CallbackVerifier
from payment_bridge.config import Settings, settings
from payment_bridge.errors import (
    ConflictingResult,
    DuplicateOrder,
    PaymentBridgeError,
    SessionNotFound,
    ValidationError,
)
from payment_bridge.gateway_session import GatewaySessionBuilder
from payment_bridge.models import (
    ErrorResponse,
    InitiatePaymentRequest,
    InitiatePaymentResponse,
    OrderStatusResponse,
    OrderView,
    PrintJobIn,
)
from payment_bridge.order_broker import OrderBroker
from payment_bridge.payment_service import PaymentService

logger = logging.getLogger("payment_bridge.app")

ERROR_STATUS = {
    ValidationError: 400,
    SessionNotFound: 404,
    DuplicateOrder: 409,
    ConflictingResult: 409,
}


def create_app(config: Settings = settings) -> FastAPI:
    """
    Build the app and its in-process singletons.
    """
    app = FastAPI(title="Payment Bridge", version=config.SERVICE_VERSION)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    broker = OrderBroker(currency=config.GATEWAY_CURRENCY)
    service = PaymentService(
        config=config,
        broker=broker,
        builder=GatewaySessionBuilder(config),
        verifier=CallbackVerifier(config.GATEWAY_CALLBACK_HASH_FIELDS, config.GATEWAY_STORE_KEY),
    )
    app.state.service = service

    # -------------------------------------------------------------------------
    # Error handling
    # -------------------------------------------------------------------------
    @app.exception_handler(PaymentBridgeError)
    async def bridge_error(request: Request, exc: PaymentBridgeError) -> JSONResponse:
        status_code = ERROR_STATUS.get(type(exc), 500)
        body = ErrorResponse(error=exc.message, code=exc.code)
        return JSONResponse(status_code=status_code, content=body.model_dump())

    @app.exception_handler(RequestValidationError)
    async def request_invalid(request: Request, exc: RequestValidationError) -> JSONResponse:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'][1:])}: {err['msg']}" for err in exc.errors()
        )
        body = ErrorResponse(error=f"Invalid payment request ({problems})", code=ValidationError.code)
        return JSONResponse(status_code=400, content=body.model_dump())

    # -------------------------------------------------------------------------
    # Routes
    # -------------------------------------------------------------------------
    @app.get("/health")
    async def health() -> dict:
        return {
            "status": "ok",
            "service": "payment_bridge",
            "version": config.SERVICE_VERSION,
            "gateway": "test" if config.GATEWAY_TEST_MODE else "production",
            "sandbox": config.GATEWAY_SANDBOX,
            "sessions": broker.stats(),
            "printJobs": service.print_job_count,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.post("/payment/initiate")
    async def initiate_payment(req: InitiatePaymentRequest) -> JSONResponse:
        session, payment_url = service.initiate(req)
        body = InitiatePaymentResponse(order_id=session.order_id, payment_url=payment_url)
        return JSONResponse(content=body.model_dump(mode="json", by_alias=True))

    @app.get("/payment/redirect/{order_id}", response_class=HTMLResponse)
    async def payment_redirect(order_id: str) -> HTMLResponse:
        try:
            html = service.redirect_document(order_id)
        except SessionNotFound:
            return HTMLResponse("<h1>Order not found</h1>", status_code=404)
        except ConflictingResult:
            return HTMLResponse("<h1>Order already settled</h1>", status_code=409)
        return HTMLResponse(html)

    @app.get("/payment/sandbox/{order_id}", response_class=HTMLResponse)
    async def payment_sandbox(order_id: str) -> HTMLResponse:
        if not config.GATEWAY_SANDBOX:
            return HTMLResponse("<h1>Sandbox disabled</h1>", status_code=404)
        try:
            return HTMLResponse(service.sandbox_page(order_id))
        except SessionNotFound:
            return HTMLResponse("<h1>Order not found</h1>", status_code=404)

    @app.post("/payment/callback/success")
    async def callback_success(request: Request) -> RedirectResponse:
        form = await request.form()
        outcome = service.handle_callback(dict(form), "success")
        return RedirectResponse(outcome.redirect_url, status_code=303)

    @app.post("/payment/callback/fail")
    async def callback_fail(request: Request) -> RedirectResponse:
        form = await request.form()
        outcome = service.handle_callback(dict(form), "fail")
        return RedirectResponse(outcome.redirect_url, status_code=303)

    @app.get("/payment/print-jobs")
    async def list_print_jobs(limit: int = 10) -> dict:
        jobs = service.recent_print_jobs(limit)
        return {
            "success": True,
            "printJobs": [
                {
                    "id": job.id,
                    "orderId": job.order_id,
                    "status": job.status,
                    "printedAt": job.printed_at.isoformat(),
                    "receiptData": job.receipt_data,
                }
                for job in jobs
            ],
        }

    @app.post("/payment/print-jobs")
    async def log_print_job(body: PrintJobIn) -> dict:
        job = service.record_print_job(body.order_id, body.receipt_data)
        return {"success": True, "printJobId": job.id, "message": "Print job recorded"}

    @app.get("/payment/{order_id}/status")
    async def payment_status(order_id: str) -> JSONResponse:
        session = service.status(order_id)
        body = OrderStatusResponse(order=OrderView.from_session(session))
        return JSONResponse(content=body.model_dump(mode="json", by_alias=True))

    @app.post("/payment/{order_id}/cancel")
    async def cancel_payment(order_id: str) -> JSONResponse:
        session = service.cancel(order_id)
        body = OrderStatusResponse(order=OrderView.from_session(session))
        return JSONResponse(content=body.model_dump(mode="json", by_alias=True))

    return app


app = create_app()


# For local dev convenience:
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
