# oneshot_webhook/webhooks/oneshot.py
import logging
from typing import Any

from starlette.responses import JSONResponse

from oneshot_webhook.core.config import settings
from oneshot_webhook.webhooks.signature import verify_signature

logger = logging.getLogger(__name__)


def handle_oneshot_webhook(body: Any) -> JSONResponse:
    """
    Authenticate a signed 1Shot webhook.

    The body carries its own Ed25519 signature in the "signature" field,
    computed over the rest of the body.

    Returns:
        200 with the body as the workflow item when the signature is valid,
        400 when the body is unsigned, 401 when verification fails
    """
    if not isinstance(body, dict):
        return JSONResponse(status_code=400, content={"error": "Webhook payload must be a JSON object"})

    signature = body.get("signature")
    if not signature:
        logger.warning("1Shot webhook received without a signature")
        return JSONResponse(status_code=400, content={"error": "No signature provided in webhook payload"})

    if not settings.WEBHOOK_PUBLIC_KEY:
        logger.error("WEBHOOK_PUBLIC_KEY is not configured; cannot verify 1Shot webhooks")

    payload = {key: value for key, value in body.items() if key != "signature"}
    if not verify_signature(settings.WEBHOOK_PUBLIC_KEY or "", signature, payload):
        logger.warning("1Shot: Signature verification failed")
        return JSONResponse(status_code=401, content={"error": "Signature verification failed"})

    logger.info("1Shot webhook signature verified")
    return JSONResponse(status_code=200, content=body)
