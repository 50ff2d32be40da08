# oneshot_webhook/api/endpoints/webhook.py
import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response

from oneshot_webhook.core.config import settings
from oneshot_webhook.webhooks.oneshot import handle_oneshot_webhook
from oneshot_webhook.x402.handler import get_x402_handler

logger = logging.getLogger(__name__)
router = APIRouter()

SUPPORTED_METHODS = ["DELETE", "GET", "HEAD", "PATCH", "POST", "PUT"]


async def read_body(request: Request) -> Any:
    """
    Read the request body as JSON, falling back to text.

    An empty body reads as an empty object.
    """
    raw = await request.body()
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return raw.decode("utf-8", errors="replace")


def allowed_methods() -> list:
    """HTTP methods the configured webhook listens to."""
    if settings.WEBHOOK_TYPE == "oneshot":
        return ["POST"]
    return [method.upper() for method in settings.HTTP_METHODS]


async def dispatch_webhook(request: Request, path: str, execution_mode: str) -> Response:
    if path.strip("/") != settings.WEBHOOK_PATH.strip("/"):
        raise HTTPException(status_code=404, detail="Webhook not found")

    if request.method.upper() not in allowed_methods():
        raise HTTPException(status_code=405, detail=f"Method {request.method} not allowed for this webhook")

    body = await read_body(request)
    logger.info(f"Webhook {settings.WEBHOOK_TYPE} request received ({execution_mode}): {request.method} /{path}")

    try:
        if settings.WEBHOOK_TYPE == "oneshot":
            return handle_oneshot_webhook(body)
        return await get_x402_handler().handle(request, body, execution_mode=execution_mode)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error handling webhook request: {e}")
        raise HTTPException(
            status_code=500,
            detail="An unexpected error occurred"
        )


@router.api_route("/webhook/{path:path}", methods=SUPPORTED_METHODS, include_in_schema=False)
async def production_webhook(path: str, request: Request) -> Response:
    """Production webhook URL."""
    return await dispatch_webhook(request, path, "production")


@router.api_route("/webhook-test/{path:path}", methods=SUPPORTED_METHODS, include_in_schema=False)
async def test_webhook(path: str, request: Request) -> Response:
    """Test webhook URL; identical handling, reported as test executions."""
    return await dispatch_webhook(request, path, "test")
