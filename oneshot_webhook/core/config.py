# oneshot_webhook/core/config.py
from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl, BaseModel, Field  # AnyHttpUrl stays in pydantic core
from functools import lru_cache
from typing import Dict, List, Literal, Optional
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()


class PaymentTokenConfig(BaseModel):
    """
    One accepted payment token, as configured for the webhook.

    paymentToken is "<network>:<contractAddress>", matching an entry of the
    1Shot API supported-token registry. paymentAmount is in the token's
    smallest unit (USDC has 6 decimals, so 1000000 is $1.00).
    """
    paymentToken: str
    payToAddress: str
    paymentAmount: int = Field(1000000, ge=0)


class Settings(BaseSettings):
    PROJECT_NAME: str = "1Shot API Webhook"

    # "oneshot" verifies an Ed25519 signature, "x402" requires a payment
    WEBHOOK_TYPE: Literal["oneshot", "x402"] = "oneshot"
    WEBHOOK_PATH: str = "1shot"
    # Public base URL of this service, e.g. https://hooks.example.com
    # Required for x402 webhooks: it is the paid resource URL.
    WEBHOOK_BASE_URL: Optional[str] = None
    HTTP_METHODS: List[str] = ["POST"]

    # Signature verification
    WEBHOOK_PUBLIC_KEY: Optional[str] = None  # base64 Ed25519 public key

    # 1Shot API credentials
    ONESHOT_API_URL: AnyHttpUrl = "https://api.1shotapi.com/v0"
    ONESHOT_CLIENT_ID: Optional[str] = None
    ONESHOT_CLIENT_SECRET: Optional[str] = None
    ONESHOT_API_TIMEOUT: float = 30.0

    # x402 payment gateway
    X402_TOKENS: List[PaymentTokenConfig] = []
    X402_RESOURCE_DESCRIPTION: str = ""
    X402_MIME_TYPE: str = "application/json"
    X402_SUPPORTED_CACHE_TTL: int = 300  # 5 minutes
    X402_REFUNDS_CONTACT_EMAIL: Optional[str] = None
    X402_IP_WHITELIST: Optional[str] = None  # comma separated IPs / CIDR ranges
    X402_AUDIT_LOG_PATH: str = ""  # empty disables the audit log

    # x402scan resource directory
    X402SCAN_ENABLED: bool = True
    X402SCAN_REGISTER_URL: str = "https://www.x402scan.com/api/trpc/public.resources.register"
    X402SCAN_TIMEOUT: float = 15.0
    X402_REGISTRATION_STATE_PATH: str = ""  # empty keeps state in memory

    # Response settings
    RESPONSE_MODE: Literal["onReceived", "streaming"] = "onReceived"
    RESPONSE_DATA: Literal["firstEntryJson", "allEntries", "noData"] = "firstEntryJson"
    RESPONSE_CODE: int = Field(200, ge=100, le=599)
    RESPONSE_HEADERS: Dict[str, str] = {}

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env


@lru_cache()  # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
