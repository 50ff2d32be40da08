# oneshot_webhook/x402/handler.py
"""
Request flow of the x402 payment-gated webhook.

Flow:
1. Refuse clients outside the IP allowlist (403)
2. Register the webhook with x402scan if it changed
3. Load the supported-token registry (cached)
4. Build the payment requirements from the configured tokens
5. Without an x-payment header, answer 402 with the requirements
6. Decode the header, check its shape, then check it against the
   requirements (402 on any problem)
7. Verify, then settle, the payment with the 1Shot API
8. Answer with the workflow item, including the transaction hash

Each request runs the whole chain once; nothing is retried.
"""
import logging
import threading
from typing import Any, List, Optional, Sequence

from fastapi import Request
from fastapi.responses import Response
from starlette.concurrency import run_in_threadpool
from starlette.responses import PlainTextResponse

from oneshot_webhook.api.models.x402 import PaymentRequirement
from oneshot_webhook.core.config import settings
from oneshot_webhook.services.oneshot_api import OneShotClient, get_oneshot_client, has_credentials
from oneshot_webhook.x402 import X_PAYMENT_HEADER
from oneshot_webhook.x402.access import get_client_ips, is_ip_whitelisted
from oneshot_webhook.x402.audit import (
    generate_request_id,
    log_access_blocked,
    log_backend_error,
    log_payment_rejected,
    log_payment_required,
    log_payment_settled,
    log_settlement_ambiguous,
)
from oneshot_webhook.x402.cache import SupportedTokenCache, get_supported_token_cache
from oneshot_webhook.x402.errors import BackendError, ConfigurationError, PaymentHeaderError
from oneshot_webhook.x402.registration import (
    RegistrationGuard,
    get_registration_guard,
    should_register,
)
from oneshot_webhook.x402.requirements import build_payment_requirements
from oneshot_webhook.x402.responses import (
    build_output_item,
    create_402_response,
    create_backend_error_response,
    create_configuration_error_response,
    create_success_response,
)
from oneshot_webhook.x402.settlement import SettlementCoordinator, SettlementStatus
from oneshot_webhook.x402.validation import (
    VALID,
    decode_payment_header,
    validate_payment_shape,
    verify_payment_details,
)

logger = logging.getLogger(__name__)

PRODUCTION_PREFIX = "/webhook/"
TEST_PREFIX = "/webhook-test/"


def get_webhook_url() -> str:
    """
    Resolve the public production URL of the webhook.

    This is the resource being paid for, so test-mode requests still
    resolve to the production URL. It comes from configuration only;
    the Host header of a request never changes it.

    Raises:
        ConfigurationError: If WEBHOOK_BASE_URL is not set
    """
    if not settings.WEBHOOK_BASE_URL:
        raise ConfigurationError("WEBHOOK_BASE_URL is required for x402 webhooks")
    base_url = settings.WEBHOOK_BASE_URL.rstrip("/")
    return f"{base_url}{PRODUCTION_PREFIX}{settings.WEBHOOK_PATH.strip('/')}"


def get_output_webhook_url(webhook_url: str, execution_mode: str) -> str:
    """The webhook URL as reported to the workflow for an execution mode."""
    if execution_mode == "test":
        return webhook_url.replace(PRODUCTION_PREFIX, TEST_PREFIX, 1)
    return webhook_url


class X402WebhookHandler:
    """
    Handles requests to the x402 payment-gated webhook.

    The handler owns nothing itself: the backend client, the registry cache
    and the registration guard are injected so one endpoint instance shares
    them across concurrent requests.
    """

    def __init__(
        self,
        client: OneShotClient,
        cache: Optional[SupportedTokenCache] = None,
        guard: Optional[RegistrationGuard] = None,
        coordinator: Optional[SettlementCoordinator] = None
    ):
        self._client = client
        self._cache = cache if cache is not None else get_supported_token_cache()
        self._guard = guard if guard is not None else get_registration_guard()
        self._coordinator = coordinator if coordinator is not None else SettlementCoordinator(client)

    def _reject(
        self,
        error_message: str,
        requirements: Sequence[PaymentRequirement],
        resource: str,
        request_id: str
    ) -> Response:
        logger.info(f"x402: Returning 402 for {resource}: {error_message}")
        log_payment_required(
            error_message,
            [requirement.network for requirement in requirements],
            resource,
            request_id=request_id
        )
        return create_402_response(error_message, requirements)

    async def load_requirements(self, webhook_url: str) -> List[PaymentRequirement]:
        """
        Build this webhook's payment requirements.

        Raises:
            BackendError: If the supported-token registry cannot be loaded
            ConfigurationError: If the configured tokens are not supported
        """
        supported = await run_in_threadpool(
            self._cache.get_supported_tokens,
            self._client.client_id,
            self._client.get_x402_supported
        )
        return build_payment_requirements(
            settings.X402_TOKENS,
            supported,
            resource=webhook_url,
            description=settings.X402_RESOURCE_DESCRIPTION,
            mime_type=settings.X402_MIME_TYPE,
        )

    async def handle(self, request: Request, body: Any, execution_mode: str = "production") -> Response:
        """
        Run the x402 flow for one inbound request.

        Args:
            request: The inbound request
            body: The already-read request body (parsed JSON or text)
            execution_mode: "production" or "test"
        """
        request_id = generate_request_id()

        client_ips = get_client_ips(request)
        if not is_ip_whitelisted(client_ips):
            log_access_blocked(client_ips, request_id=request_id)
            return PlainTextResponse("IP is not whitelisted to access the webhook!", status_code=403)

        if not has_credentials():
            logger.error("x402: 1Shot API client credentials are not configured")
            return PlainTextResponse("1Shot API credentials not found", status_code=403)

        try:
            webhook_url = get_webhook_url()
        except ConfigurationError as e:
            logger.error(f"x402: {e}")
            return create_configuration_error_response(e)
        description = settings.X402_RESOURCE_DESCRIPTION
        mime_type = settings.X402_MIME_TYPE

        if should_register(settings.HTTP_METHODS):
            await self._guard.maybe_register(webhook_url, description, mime_type)

        try:
            requirements = await self.load_requirements(webhook_url)
        except BackendError as e:
            logger.error(f"x402: Could not load supported tokens: {e}")
            log_backend_error("supported", str(e), request_id=request_id)
            return create_backend_error_response(e)
        except ConfigurationError as e:
            logger.error(f"x402: {e}")
            return create_configuration_error_response(e)

        payment_header = request.headers.get(X_PAYMENT_HEADER)
        if not payment_header:
            return self._reject("No x-payment header provided", requirements, webhook_url, request_id)

        try:
            payment = decode_payment_header(payment_header)
        except PaymentHeaderError as e:
            logger.warning(f"x402: Could not decode x-payment header: {e}")
            return self._reject(f"Invalid x-payment header: {e}", requirements, webhook_url, request_id)

        shape = validate_payment_shape(payment)
        if shape != VALID:
            logger.warning(f"x402: Malformed x-payment header: {shape}")
            return self._reject("x-payment header is not valid", requirements, webhook_url, request_id)

        verification = verify_payment_details(payment, requirements)
        if not verification.valid:
            return self._reject(
                f"x-payment header is not valid for reasons: {verification.errors}",
                requirements,
                webhook_url,
                request_id
            )

        requirement = verification.payment_requirements
        try:
            outcome = await self._coordinator.process(payment, requirement)
        except BackendError as e:
            log_backend_error("verify", str(e), request_id=request_id)
            return create_backend_error_response(e)

        if outcome.status == SettlementStatus.VERIFY_REJECTED:
            log_payment_rejected("verify", outcome.error, outcome.payer, request_id=request_id)
            return self._reject(
                f"x-payment verification failed: {outcome.error}", requirements, webhook_url, request_id
            )

        if outcome.status == SettlementStatus.SETTLE_REJECTED:
            log_payment_rejected("settle", outcome.error, outcome.payer, request_id=request_id)
            return self._reject(
                f"x-payment settlement failed: {outcome.error}", requirements, webhook_url, request_id
            )

        amount = payment["payload"]["authorization"]["value"]
        if outcome.status == SettlementStatus.AMBIGUOUS:
            log_settlement_ambiguous(
                outcome.tx_hash, requirement.network, amount, outcome.error, outcome.payer,
                request_id=request_id
            )
        else:
            log_payment_settled(
                outcome.tx_hash, requirement.network, amount, outcome.payer, request_id=request_id
            )

        item = build_output_item(
            headers=dict(request.headers),
            params=dict(request.path_params),
            query=dict(request.query_params),
            body=body,
            tx_hash=outcome.tx_hash,
            payment_requirements=requirements,
            payment_payload=payment,
            webhook_url=get_output_webhook_url(webhook_url, execution_mode),
            execution_mode=execution_mode,
        )
        return create_success_response(item)


# Global handler instance
_handler: Optional[X402WebhookHandler] = None
_handler_lock = threading.Lock()


def get_x402_handler() -> X402WebhookHandler:
    """
    Get the x402 handler of this service's webhook endpoint.

    Returns:
        The singleton X402WebhookHandler
    """
    global _handler

    if _handler is None:
        with _handler_lock:
            if _handler is None:
                _handler = X402WebhookHandler(get_oneshot_client())

    return _handler


def reset_x402_handler() -> None:
    """Drop the global handler (useful for testing)."""
    global _handler
    with _handler_lock:
        _handler = None
