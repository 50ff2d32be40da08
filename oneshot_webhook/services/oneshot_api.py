# oneshot_webhook/services/oneshot_api.py
import logging
import threading
import time
from typing import Any, Dict, Optional

import requests
from requests.exceptions import RequestException

from oneshot_webhook.api.models.x402 import (
    PaymentRequirement,
    SettleResponse,
    SupportedResponse,
    VerifyResponse,
)
from oneshot_webhook.core.config import settings
from oneshot_webhook.x402.errors import BackendError

logger = logging.getLogger(__name__)

# Refresh the access token this many seconds before it actually expires
TOKEN_EXPIRY_MARGIN = 30


class OneShotClient:
    """
    Authenticated client for the 1Shot API.

    Authenticates with the OAuth2 client-credentials grant and keeps the
    bearer token until shortly before it expires. Every call raises
    BackendError on transport failures, HTTP errors and malformed responses.
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        timeout: float = 30.0
    ):
        self._base_url = str(base_url).rstrip("/")
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = timeout
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    @property
    def client_id(self) -> str:
        return self._client_id

    def _url(self, path: str) -> str:
        return f"{self._base_url}/{path.lstrip('/')}"

    def get_access_token(self) -> str:
        """Return a valid bearer token, requesting a new one when needed."""
        with self._token_lock:
            if self._access_token and time.time() < self._token_expires_at - TOKEN_EXPIRY_MARGIN:
                return self._access_token

            api_url = self._url("token")
            try:
                response = requests.post(
                    api_url,
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self._client_id,
                        "client_secret": self._client_secret,
                    },
                    headers={"Accept": "application/json"},
                    timeout=self._timeout
                )
                response.raise_for_status()
                data = response.json()
                access_token = data.get("access_token")
                if not access_token:
                    raise ValueError("API Response missing 'access_token'")
                expires_in = int(data.get("expires_in", 3600))
            except RequestException as e:
                logger.error(f"Error requesting 1Shot API access token ({api_url}): {e}")
                raise BackendError(f"Could not authenticate with the 1Shot API: {e}") from e
            except (ValueError, TypeError, AttributeError) as e:
                logger.error(f"Error parsing 1Shot API token response: {e}")
                raise BackendError(f"Could not parse 1Shot API token response: {e}") from e

            self._access_token = access_token
            self._token_expires_at = time.time() + expires_in
            return access_token

    def invalidate_token(self) -> None:
        with self._token_lock:
            self._access_token = None
            self._token_expires_at = 0.0

    def _request(
        self,
        method: str,
        path: str,
        timeout: Optional[float],
        body: Optional[Dict[str, Any]] = None
    ) -> Any:
        api_url = self._url(path)
        headers = {
            "Authorization": f"Bearer {self.get_access_token()}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        try:
            response = requests.request(method, api_url, json=body, headers=headers, timeout=timeout)
            if response.status_code == 401:
                # Token revoked or expired early; fetch a fresh one next time
                self.invalidate_token()
            response.raise_for_status()
            return response.json()
        except RequestException as e:
            logger.error(f"Error calling 1Shot API {method} {api_url}: {e}")
            raise BackendError(f"1Shot API request {method} {path} failed: {e}") from e
        except ValueError as e:
            logger.error(f"Invalid JSON from 1Shot API {method} {api_url}: {e}")
            raise BackendError(f"1Shot API returned invalid JSON for {path}") from e

    def _parse(self, model, data: Any, path: str):
        try:
            return model.model_validate(data)
        except ValueError as e:
            logger.error(f"Unexpected response structure from 1Shot API {path}: {e}")
            raise BackendError(f"Unexpected response from 1Shot API {path}") from e

    def get_x402_supported(self) -> SupportedResponse:
        """
        Fetch the networks and tokens the 1Shot API can settle payments for.

        Returns:
            The supported-token registry

        Raises:
            BackendError: If the request fails or the response is malformed
        """
        data = self._request("GET", "/x402/supported", timeout=self._timeout)
        return self._parse(SupportedResponse, data, "/x402/supported")

    def verify_x402_payment(
        self,
        x402_version: int,
        payment_payload: Dict[str, Any],
        payment_requirements: PaymentRequirement
    ) -> VerifyResponse:
        """
        Ask the 1Shot API whether a payment authorization is valid.

        Raises:
            BackendError: If the request fails or the response is malformed
        """
        body = {
            "x402Version": x402_version,
            "paymentPayload": payment_payload,
            "paymentRequirements": payment_requirements.to_wire(),
        }
        data = self._request("POST", "/x402/verify", timeout=self._timeout, body=body)
        return self._parse(VerifyResponse, data, "/x402/verify")

    def settle_x402_payment(
        self,
        x402_version: int,
        payment_payload: Dict[str, Any],
        payment_requirements: PaymentRequirement
    ) -> SettleResponse:
        """
        Ask the 1Shot API to settle a verified payment on-chain.

        No timeout is applied: the transfer is real, and giving up on the
        call would lose its result while the payment still settles.

        Raises:
            BackendError: If the request fails or the response is malformed
        """
        body = {
            "x402Version": x402_version,
            "paymentPayload": payment_payload,
            "paymentRequirements": payment_requirements.to_wire(),
        }
        data = self._request("POST", "/x402/settle", timeout=None, body=body)
        return self._parse(SettleResponse, data, "/x402/settle")


# Global client instance
_client: Optional[OneShotClient] = None
_client_lock = threading.Lock()


def has_credentials() -> bool:
    """Check whether 1Shot API client credentials are configured."""
    return bool(settings.ONESHOT_CLIENT_ID and settings.ONESHOT_CLIENT_SECRET)


def get_oneshot_client() -> OneShotClient:
    """
    Get the global 1Shot API client, built from settings on first use.

    Returns:
        The singleton OneShotClient
    """
    global _client

    if _client is None:
        with _client_lock:
            if _client is None:
                _client = OneShotClient(
                    base_url=str(settings.ONESHOT_API_URL),
                    client_id=settings.ONESHOT_CLIENT_ID or "",
                    client_secret=settings.ONESHOT_CLIENT_SECRET or "",
                    timeout=settings.ONESHOT_API_TIMEOUT
                )

    return _client


def reset_oneshot_client() -> None:
    """Drop the global client (useful for testing)."""
    global _client
    with _client_lock:
        _client = None
