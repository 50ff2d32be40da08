# tests/conftest.py
"""
Shared fixtures.

All modules import the same Settings instance, so tests configure the
service by setting attributes on it; monkeypatch restores them afterwards.
"""
import json

import pytest
from x402.encoding import safe_base64_encode

from oneshot_webhook.api.models.x402 import PaymentRequirement, TokenExtra
from oneshot_webhook.core.config import PaymentTokenConfig, settings
from oneshot_webhook.services.oneshot_api import reset_oneshot_client
from oneshot_webhook.x402.cache import reset_supported_token_cache
from oneshot_webhook.x402.handler import reset_x402_handler
from oneshot_webhook.x402.registration import reset_registration_guard

USDC = "0xUSDC"
PAYEE = "0xPAYEE"
WEBHOOK_BASE_URL = "https://hooks.example.com"
WEBHOOK_URL = f"{WEBHOOK_BASE_URL}/webhook/pay"


@pytest.fixture(autouse=True)
def reset_singletons():
    """Drop global clients, caches and guards around each test."""
    reset_oneshot_client()
    reset_supported_token_cache()
    reset_registration_guard()
    reset_x402_handler()
    yield
    reset_oneshot_client()
    reset_supported_token_cache()
    reset_registration_guard()
    reset_x402_handler()


@pytest.fixture
def configure(monkeypatch):
    """Set settings attributes for the duration of a test."""
    def _configure(**values):
        for name, value in values.items():
            monkeypatch.setattr(settings, name, value)
    return _configure


@pytest.fixture
def x402_settings(configure):
    """A single USDC-on-base x402 webhook."""
    configure(
        WEBHOOK_TYPE="x402",
        WEBHOOK_PATH="pay",
        WEBHOOK_BASE_URL=WEBHOOK_BASE_URL,
        HTTP_METHODS=["POST"],
        ONESHOT_CLIENT_ID="client-1",
        ONESHOT_CLIENT_SECRET="secret-1",
        X402_TOKENS=[
            PaymentTokenConfig(paymentToken=f"base:{USDC}", payToAddress=PAYEE, paymentAmount=1000000)
        ],
        X402_RESOURCE_DESCRIPTION="",
        X402_MIME_TYPE="application/json",
        X402_IP_WHITELIST=None,
        X402_REFUNDS_CONTACT_EMAIL=None,
        X402_AUDIT_LOG_PATH="",
        X402SCAN_ENABLED=True,
        RESPONSE_MODE="onReceived",
        RESPONSE_DATA="firstEntryJson",
        RESPONSE_CODE=200,
        RESPONSE_HEADERS={},
    )
    return settings


def make_payment(
    network: str = "base",
    value: str = "1000000",
    to: str = PAYEE,
    valid_after: str = "0",
    valid_before: str = "9999999999",
) -> dict:
    """A decoded x-payment header."""
    return {
        "x402Version": 1,
        "scheme": "exact",
        "network": network,
        "payload": {
            "signature": "0x" + "ab" * 65,
            "authorization": {
                "from": "0x1234567890abcdef1234567890abcdef12345678",
                "to": to,
                "value": value,
                "validAfter": valid_after,
                "validBefore": valid_before,
                "nonce": "0x" + "00" * 32,
            },
        },
    }


def encode_payment(payment: dict) -> str:
    """Encode a payment the way a payer puts it in the x-payment header."""
    return safe_base64_encode(json.dumps(payment, separators=(",", ":")))


def make_requirement(network: str = "base", amount: str = "1000000", pay_to: str = PAYEE) -> PaymentRequirement:
    """A payment requirement as built for the USDC-on-base token."""
    return PaymentRequirement(
        scheme="exact",
        network=network,
        maxAmountRequired=amount,
        resource=WEBHOOK_URL,
        description="OneShot API Webhook",
        mimeType="application/json",
        payTo=pay_to,
        maxTimeoutSeconds=60,
        asset=USDC,
        extra=TokenExtra(name="USD Coin", version="2"),
    )
