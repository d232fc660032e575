"""Shared fixtures: test settings, the backend app and signed callback payloads."""

from typing import Dict

import httpx
import pytest
from fastapi.testclient import TestClient

from app import create_app
from payment_bridge import signer
from payment_bridge.backend_client import BackendClient
from payment_bridge.config import Settings

STORE_KEY = "TEST_STORE_KEY"
CLIENT_ID = "600100000"
CALLBACK_HASH_FIELDS = ["clientid", "oid", "AuthCode", "ProcReturnCode", "Response", "mdStatus", "rnd"]

COFFEE = {"id": "1", "name": "Coffee", "price": 28.50, "quantity": 2}


def make_settings(**overrides) -> Settings:
    values = dict(
        GATEWAY_CLIENT_ID=CLIENT_ID,
        GATEWAY_STORE_KEY=STORE_KEY,
        GATEWAY_CALLBACK_HASH_FIELDS=CALLBACK_HASH_FIELDS,
        PUBLIC_BASE_URL="http://testserver",
        BACKEND_BASE_URL="http://testserver",
        SIMULATED_PRINT_DELAY_SECONDS=0.0,
        HTTP_BACKOFF_SECONDS=0.0,
        STORE_NAME="Corner Cafe",
    )
    values.update(overrides)
    return Settings(**values)


def signed_callback(order_id: str, store_key: str = STORE_KEY, **overrides) -> Dict[str, str]:
    """
    An approved 3-D callback body, hashed over CALLBACK_HASH_FIELDS.
    Overrides are applied before hashing.
    """
    body = {
        "clientid": CLIENT_ID,
        "oid": order_id,
        "AuthCode": "P12345",
        "ProcReturnCode": "00",
        "Response": "Approved",
        "mdStatus": "1",
        "rnd": "a1b2c3d4",
        "amount": "57.00",
    }
    body.update(overrides)
    body["HASH"] = signer.sign([body[name] for name in CALLBACK_HASH_FIELDS], store_key)
    return body


@pytest.fixture()
def config() -> Settings:
    return make_settings()


@pytest.fixture()
def app(config):
    return create_app(config)


@pytest.fixture()
def client(app):
    return TestClient(app)


@pytest.fixture()
def service(app):
    return app.state.service


@pytest.fixture()
def asgi_backend(app, config) -> BackendClient:
    """BackendClient talking to the in-process app."""
    return BackendClient(config, transport=httpx.ASGITransport(app=app))
