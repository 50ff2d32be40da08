# oneshot_webhook/main.py
from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from oneshot_webhook.core.config import settings
from oneshot_webhook.api.endpoints import webhook
from oneshot_webhook.x402.handler import get_webhook_url
from oneshot_webhook.x402.requirements import check_token_config

# Configure basic logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Fail fast on configuration that no request could ever satisfy
    if settings.WEBHOOK_TYPE == "x402":
        check_token_config(settings.X402_TOKENS)
        get_webhook_url()
        if not settings.X402_TOKENS:
            logger.warning("x402 webhook has no payment tokens configured")
    elif not settings.WEBHOOK_PUBLIC_KEY:
        logger.warning("WEBHOOK_PUBLIC_KEY is not set; every 1Shot webhook will fail verification")
    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    lifespan=lifespan,
)

app.include_router(webhook.router, tags=["webhook"])


@app.get("/", summary="Health Check", tags=["default"])
def read_root():
    """ Basic health check endpoint. """
    logger.info("Root endpoint '/' accessed.")
    return {
        "status": "ok",
        "message": f"Welcome to {settings.PROJECT_NAME}",
        "webhookType": settings.WEBHOOK_TYPE,
    }
