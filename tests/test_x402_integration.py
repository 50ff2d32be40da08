# tests/test_x402_integration.py
"""
Integration tests for the x402 payment-gated webhook.

These tests run requests through the FastAPI app with the 1Shot API
client mocked:
- 402 challenges with the payment requirements
- Header decoding and validation failures
- Verification, settlement and ambiguous settlement
- IP allowlist, credentials and backend failures
- x402scan registration
"""
import json
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from oneshot_webhook.api.models.x402 import SettleResponse, SupportedResponse, VerifyResponse
from oneshot_webhook.main import app
from oneshot_webhook.services.oneshot_api import OneShotClient
from oneshot_webhook.x402.audit import read_audit_log
from oneshot_webhook.x402.cache import SupportedTokenCache
from oneshot_webhook.x402.errors import BackendError, ConfigurationError
from oneshot_webhook.x402.handler import X402WebhookHandler
from oneshot_webhook.x402.registration import RegistrationGuard, RegistrationStore

from conftest import PAYEE, USDC, WEBHOOK_URL, encode_payment, make_payment

PAYER = "0x1234567890abcdef1234567890abcdef12345678"

SUPPORTED = SupportedResponse.model_validate({
    "kinds": [{
        "scheme": "exact",
        "network": "base",
        "tokens": [{"contractAddress": USDC, "name": "USD Coin", "version": "2"}],
    }]
})


class Gateway:
    """The app wired to a mocked 1Shot API and directory."""

    def __init__(self):
        self.backend = MagicMock(spec=OneShotClient)
        self.backend.client_id = "client-1"
        self.backend.get_x402_supported.return_value = SUPPORTED
        self.backend.verify_x402_payment.return_value = VerifyResponse(isValid=True, payer=PAYER)
        self.backend.settle_x402_payment.return_value = SettleResponse(
            success=True, txHash="0xabc", networkId="base"
        )
        self.register = MagicMock()
        self.handler = X402WebhookHandler(
            self.backend,
            cache=SupportedTokenCache(),
            guard=RegistrationGuard(RegistrationStore(), register=self.register),
        )
        self.client = TestClient(app)

    def post(self, path="/webhook/pay", payment=None, **kwargs):
        headers = kwargs.pop("headers", {})
        if payment is not None:
            headers["x-payment"] = payment if isinstance(payment, str) else encode_payment(payment)
        return self.client.post(path, headers=headers, **kwargs)


@pytest.fixture
def gateway(x402_settings):
    gateway = Gateway()
    with patch("oneshot_webhook.api.endpoints.webhook.get_x402_handler", return_value=gateway.handler):
        yield gateway


class TestPaymentChallenge:
    """Requests without a usable payment get a 402."""

    def test_no_header(self, gateway):
        """The 402 lists exactly the configured token."""
        response = gateway.post(json={"city": "Berlin"})

        assert response.status_code == 402
        body = response.json()
        assert body["x402Version"] == 1
        assert body["error"] == "No x-payment header provided"
        assert len(body["accepts"]) == 1
        accept = body["accepts"][0]
        assert accept["scheme"] == "exact"
        assert accept["network"] == "base"
        assert accept["asset"] == USDC
        assert accept["maxAmountRequired"] == "1000000"
        assert accept["payTo"] == PAYEE
        assert accept["resource"] == WEBHOOK_URL
        assert accept["description"] == "OneShot API Webhook"
        assert accept["extra"] == {"name": "USD Coin", "version": "2"}

        gateway.backend.verify_x402_payment.assert_not_called()

    def test_undecodable_header(self, gateway):
        response = gateway.post(payment="%%%")
        assert response.status_code == 402
        assert response.json()["error"].startswith("Invalid x-payment header:")

    def test_malformed_payment(self, gateway):
        payment = make_payment()
        del payment["payload"]["authorization"]
        response = gateway.post(payment=payment)

        assert response.status_code == 402
        assert response.json()["error"] == "x-payment header is not valid"

    def test_insufficient_value(self, gateway):
        response = gateway.post(payment=make_payment(value="999999"))

        assert response.status_code == 402
        error = response.json()["error"]
        assert error.startswith("x-payment header is not valid for reasons:")
        assert "Value too low: got 999999, requires at least 1000000" in error
        gateway.backend.verify_x402_payment.assert_not_called()

    def test_wrong_network(self, gateway):
        response = gateway.post(payment=make_payment(network="polygon"))
        assert response.status_code == 402
        assert "Invalid or unsupported network: polygon" in response.json()["error"]

    def test_expired(self, gateway):
        response = gateway.post(payment=make_payment(valid_before="1"))
        assert response.status_code == 402
        assert "Payment has expired" in response.json()["error"]

    def test_verification_rejected(self, gateway):
        """A payment the backend does not verify is refused and never settled."""
        gateway.backend.verify_x402_payment.return_value = VerifyResponse(
            isValid=False, invalidReason="invalid_signature"
        )
        response = gateway.post(payment=make_payment())

        assert response.status_code == 402
        assert response.json()["error"] == "x-payment verification failed: invalid_signature"
        gateway.backend.settle_x402_payment.assert_not_called()

    def test_settlement_rejected(self, gateway):
        gateway.backend.settle_x402_payment.return_value = SettleResponse(
            success=False, error="insufficient_funds"
        )
        response = gateway.post(payment=make_payment())

        assert response.status_code == 402
        assert response.json()["error"] == "x-payment settlement failed: insufficient_funds"


class TestPaidRequests:
    """Requests with a valid payment reach the workflow."""

    def test_settled(self, gateway):
        """A verified and settled payment answers with the transaction hash."""
        payment = make_payment()
        response = gateway.post(
            "/webhook/pay?units=metric", payment=payment, json={"city": "Berlin"}
        )

        assert response.status_code == 200
        item = response.json()
        assert item["txHash"] == "0xabc"
        assert item["body"] == {"city": "Berlin"}
        assert item["query"] == {"units": "metric"}
        assert item["paymentPayload"] == payment
        assert item["paymentRequirements"][0]["payTo"] == PAYEE
        assert item["webhookUrl"] == WEBHOOK_URL
        assert item["executionMode"] == "production"

        gateway.backend.verify_x402_payment.assert_called_once()
        gateway.backend.settle_x402_payment.assert_called_once()

    def test_settle_failure_continues_with_placeholder(self, gateway):
        """A settle call that fails in transport still serves the request."""
        gateway.backend.settle_x402_payment.side_effect = BackendError("502 Bad Gateway")

        response = gateway.post(payment=make_payment())

        assert response.status_code == 200
        assert response.json()["txHash"] == "TBD"

    def test_test_mode(self, gateway):
        """The test URL reports itself while charging for the production resource."""
        response = gateway.post("/webhook-test/pay", payment=make_payment())

        assert response.status_code == 200
        item = response.json()
        assert item["executionMode"] == "test"
        assert item["webhookUrl"] == "https://hooks.example.com/webhook-test/pay"
        assert item["paymentRequirements"][0]["resource"] == WEBHOOK_URL

    def test_response_options(self, gateway, configure):
        configure(
            RESPONSE_DATA="allEntries",
            RESPONSE_CODE=201,
            RESPONSE_HEADERS={"X-Custom": "1"},
            X402_REFUNDS_CONTACT_EMAIL="refunds@example.com",
        )
        response = gateway.post(payment=make_payment())

        assert response.status_code == 201
        assert response.json()[0]["txHash"] == "0xabc"
        assert response.headers["x-custom"] == "1"
        assert "mailto:refunds@example.com" in response.headers["link"]

    def test_streaming(self, gateway, configure):
        configure(RESPONSE_MODE="streaming")
        response = gateway.post(payment=make_payment())

        assert response.status_code == 200
        assert response.headers["cache-control"] == "no-cache"
        assert json.loads(response.content)["txHash"] == "0xabc"


class TestSupportedTokens:
    """The supported-token registry is fetched through the cache."""

    def test_registry_cached_across_requests(self, gateway):
        gateway.post()
        gateway.post()
        gateway.post(payment=make_payment())

        assert gateway.backend.get_x402_supported.call_count == 1

    def test_backend_failure(self, gateway):
        gateway.backend.get_x402_supported.side_effect = BackendError("connection refused")
        response = gateway.post()

        assert response.status_code == 502
        assert response.json()["error"] == "Payment backend unavailable"

    def test_verify_backend_failure(self, gateway):
        gateway.backend.verify_x402_payment.side_effect = BackendError("timeout")
        response = gateway.post(payment=make_payment())

        assert response.status_code == 502
        gateway.backend.settle_x402_payment.assert_not_called()

    def test_unsupported_token(self, gateway):
        gateway.backend.get_x402_supported.return_value = SupportedResponse(kinds=[])
        response = gateway.post()

        assert response.status_code == 500
        assert response.json() == {
            "error": "Misconfiguration",
            "detail": "Supported network base not found",
        }


class TestAccess:
    """Requests refused before any payment handling."""

    def test_ip_not_whitelisted(self, gateway, configure):
        configure(X402_IP_WHITELIST="10.0.0.0/8")
        response = gateway.post(payment=make_payment(), headers={"X-Forwarded-For": "203.0.113.50"})

        assert response.status_code == 403
        assert response.text == "IP is not whitelisted to access the webhook!"
        gateway.backend.get_x402_supported.assert_not_called()

    def test_ip_whitelisted(self, gateway, configure):
        configure(X402_IP_WHITELIST="10.0.0.0/8")
        response = gateway.post(headers={"X-Forwarded-For": "10.1.2.3"})
        assert response.status_code == 402

    def test_missing_credentials(self, gateway, configure):
        configure(ONESHOT_CLIENT_ID=None)
        response = gateway.post()

        assert response.status_code == 403
        assert response.text == "1Shot API credentials not found"

    def test_unknown_path(self, gateway):
        assert gateway.post("/webhook/other").status_code == 404

    def test_method_not_configured(self, gateway):
        assert gateway.client.get("/webhook/pay").status_code == 405

    def test_configured_methods(self, gateway, configure):
        configure(HTTP_METHODS=["GET", "POST"])
        assert gateway.client.get("/webhook/pay").status_code == 402


class TestRegistration:
    """The webhook is listed with x402scan when it changes."""

    def test_registers_once(self, gateway):
        gateway.post()
        gateway.post()

        gateway.register.assert_called_once_with(WEBHOOK_URL)

    def test_reregisters_on_description_change(self, gateway, configure):
        gateway.post()
        configure(X402_RESOURCE_DESCRIPTION="Weather report")
        gateway.post()

        assert gateway.register.call_count == 2

    def test_registration_failure_does_not_fail_request(self, gateway):
        gateway.register.side_effect = RuntimeError("x402scan down")
        response = gateway.post()
        assert response.status_code == 402

    def test_disabled(self, gateway, configure):
        configure(X402SCAN_ENABLED=False)
        gateway.post()
        gateway.register.assert_not_called()

    def test_not_registered_for_other_methods(self, gateway, configure):
        configure(HTTP_METHODS=["PUT"])
        gateway.client.put("/webhook/pay")
        gateway.register.assert_not_called()


class TestAudit:
    """Payment decisions are written to the audit log."""

    def test_settled_and_ambiguous(self, gateway, configure, tmp_path):
        configure(X402_AUDIT_LOG_PATH=str(tmp_path / "audit.jsonl"))

        gateway.post()
        gateway.post(payment=make_payment())
        gateway.backend.settle_x402_payment.side_effect = BackendError("502 Bad Gateway")
        gateway.post(payment=make_payment())

        event_types = [event["event_type"] for event in read_audit_log()]
        assert event_types == ["payment_required_sent", "payment_settled", "settlement_ambiguous"]


class TestResourceUrl:
    """The paid resource URL comes from configuration alone."""

    def test_host_header_ignored(self, gateway):
        """Requests with a forged Host still advertise and register the configured URL."""
        for host in ("evil.attacker", "other.example:8080", "hooks.example.com"):
            response = gateway.post(headers={"Host": host})

            assert response.status_code == 402
            assert response.json()["accepts"][0]["resource"] == WEBHOOK_URL

        gateway.register.assert_called_once_with(WEBHOOK_URL)

    def test_host_header_not_in_output_item(self, gateway):
        response = gateway.post(payment=make_payment(), headers={"Host": "evil.attacker"})

        assert response.status_code == 200
        assert response.json()["webhookUrl"] == WEBHOOK_URL

    def test_missing_base_url(self, gateway, configure):
        configure(WEBHOOK_BASE_URL=None)
        response = gateway.post(payment=make_payment())

        assert response.status_code == 500
        assert response.json() == {
            "error": "Misconfiguration",
            "detail": "WEBHOOK_BASE_URL is required for x402 webhooks",
        }
        gateway.register.assert_not_called()
        gateway.backend.get_x402_supported.assert_not_called()
        gateway.backend.settle_x402_payment.assert_not_called()


class TestStartup:
    """Configuration checked when the app starts."""

    def test_x402_requires_base_url(self, x402_settings, configure):
        configure(WEBHOOK_BASE_URL=None)
        with pytest.raises(ConfigurationError, match="WEBHOOK_BASE_URL"):
            with TestClient(app):
                pass

    def test_x402_starts_with_base_url(self, x402_settings):
        with TestClient(app) as client:
            assert client.get("/").json()["webhookType"] == "x402"

    def test_oneshot_does_not_need_base_url(self, configure):
        configure(WEBHOOK_TYPE="oneshot", WEBHOOK_BASE_URL=None)
        with TestClient(app) as client:
            assert client.get("/").status_code == 200
