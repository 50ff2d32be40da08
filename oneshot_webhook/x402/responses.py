# oneshot_webhook/x402/responses.py
"""
HTTP responses of the x402 webhook.

Rejections are always a 402 carrying the payment requirements, so the payer
can retry with a valid x-payment header. Successful payments produce either
a buffered response, or for the "streaming" response mode a streaming
response whose headers are sent before any body content.
"""
import json
import logging
from typing import Any, Dict, Optional, Sequence

from fastapi.responses import Response
from starlette.responses import JSONResponse, StreamingResponse

from oneshot_webhook.api.models.x402 import PaymentRequirement, X402ErrorResponse
from oneshot_webhook.core.config import settings
from oneshot_webhook.x402 import X402_VERSION

logger = logging.getLogger(__name__)

X402_REFUNDS_REQUEST_LINK = (
    '<https://api.x402refunds.com/v1/refunds>; '
    'rel="https://x402refunds.com/rel/refund-request"; type="application/json"'
)

STREAMING_HEADERS = {
    "Content-Type": "application/json; charset=utf-8",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def create_402_response(
    error_message: str,
    payment_requirements: Sequence[PaymentRequirement]
) -> JSONResponse:
    """
    Create an HTTP 402 Payment Required response.

    Args:
        error_message: Why the request was rejected
        payment_requirements: The requirements, in configuration order

    Returns:
        JSONResponse with 402 status and payment details
    """
    body = X402ErrorResponse(
        x402Version=X402_VERSION,
        error=error_message,
        accepts=list(payment_requirements),
    )
    return JSONResponse(
        status_code=402,
        content=body.model_dump(exclude_none=True),
        headers={"Content-Type": "application/json"}
    )


def get_refund_link_header(contact_email: Optional[str]) -> Optional[str]:
    """
    Build the x402refunds Link header value for a refund contact.

    Returns:
        The header value, or None when no contact email is configured
    """
    if not contact_email:
        return None
    refund_contact = f'<mailto:{contact_email}>; rel="https://x402refunds.com/rel/refund-contact"'
    return f"{refund_contact}, {X402_REFUNDS_REQUEST_LINK}"


def get_response_headers(
    configured: Optional[Dict[str, str]] = None,
    refunds_contact_email: Optional[str] = None
) -> Dict[str, str]:
    """
    Merge the configured response headers with the refund Link header.

    An existing Link header (any case) is extended rather than replaced.
    """
    headers = dict(configured if configured is not None else settings.RESPONSE_HEADERS)
    if refunds_contact_email is None:
        refunds_contact_email = settings.X402_REFUNDS_CONTACT_EMAIL

    refund_link = get_refund_link_header(refunds_contact_email)
    if refund_link is None:
        return headers

    for name, value in headers.items():
        if name.lower() == "link":
            headers[name] = f"{value}, {refund_link}" if value else refund_link
            return headers

    headers["Link"] = refund_link
    return headers


def build_output_item(
    headers: Dict[str, str],
    params: Dict[str, Any],
    query: Dict[str, Any],
    body: Any,
    tx_hash: str,
    payment_requirements: Sequence[PaymentRequirement],
    payment_payload: Dict[str, Any],
    webhook_url: str,
    execution_mode: str
) -> Dict[str, Any]:
    """Assemble the item handed to the workflow for a paid request."""
    return {
        "headers": headers,
        "params": params,
        "query": query,
        "body": body,
        "txHash": tx_hash,
        "paymentRequirements": [requirement.to_wire() for requirement in payment_requirements],
        "paymentPayload": payment_payload,
        "webhookUrl": webhook_url,
        "executionMode": execution_mode,
    }


def create_success_response(
    item: Dict[str, Any],
    response_mode: Optional[str] = None,
    response_data: Optional[str] = None,
    status_code: Optional[int] = None,
    headers: Optional[Dict[str, str]] = None
) -> Response:
    """
    Create the response for a paid request.

    Args:
        item: The output item from build_output_item
        response_mode: "onReceived" or "streaming" (defaults to settings)
        response_data: "firstEntryJson", "allEntries" or "noData"
        status_code: Status for buffered responses (defaults to settings)
        headers: Extra response headers (defaults to get_response_headers())
    """
    response_mode = response_mode or settings.RESPONSE_MODE
    response_data = response_data or settings.RESPONSE_DATA
    status_code = status_code or settings.RESPONSE_CODE
    if headers is None:
        headers = get_response_headers()

    if response_mode == "streaming":
        # Headers are flushed with the first chunk; nothing after this point
        # can change the status code.
        async def stream():
            yield json.dumps(item).encode("utf-8")

        return StreamingResponse(
            stream(),
            status_code=200,
            headers={**headers, **STREAMING_HEADERS},
            media_type="application/json"
        )

    if response_data == "noData":
        return Response(status_code=status_code, headers=headers)

    content = [item] if response_data == "allEntries" else item
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def create_configuration_error_response(error: Exception) -> JSONResponse:
    """Response for a webhook whose payment tokens are misconfigured."""
    return JSONResponse(
        status_code=500,
        content={"error": "Misconfiguration", "detail": str(error)}
    )


def create_backend_error_response(error: Exception) -> JSONResponse:
    """Response for a request that failed because the 1Shot API did."""
    return JSONResponse(
        status_code=502,
        content={"error": "Payment backend unavailable", "detail": str(error)}
    )
