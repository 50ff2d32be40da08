# oneshot_webhook/services/x402scan.py
import logging

import requests
from requests.exceptions import RequestException

from oneshot_webhook.core.config import settings

logger = logging.getLogger(__name__)


def register_resource(resource_url: str) -> None:
    """
    Register an x402 resource URL with the x402scan public directory.

    x402scan probes the URL itself to read the 402 challenge, so only the
    URL is sent.

    Args:
        resource_url: Public URL of the x402-gated webhook

    Raises:
        RequestException: If the HTTP request to x402scan fails
    """
    api_url = settings.X402SCAN_REGISTER_URL
    body = {
        "0": {
            "json": {
                "url": resource_url,
                "headers": {},
            }
        }
    }
    logger.info(f"Registering webhook with x402scan: {resource_url}")

    try:
        response = requests.post(
            api_url,
            params={"batch": 1},
            json=body,
            headers={"Accept": "application/json", "Content-Type": "application/json"},
            timeout=settings.X402SCAN_TIMEOUT
        )
        response.raise_for_status()
    except RequestException as e:
        logger.error(f"Error registering resource with x402scan ({api_url}): {e}")
        raise

    logger.debug(f"x402scan registration response: {response.text}")
