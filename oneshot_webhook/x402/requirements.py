# oneshot_webhook/x402/requirements.py
"""
Payment requirements for the x402 challenge.

Maps the webhook's configured payment tokens against the 1Shot API
supported-token registry. The x402 payment payload only names a network,
not a token, so at most one token may be configured per network.
"""
import logging
from typing import Iterable, List, Tuple

from oneshot_webhook.api.models.x402 import PaymentRequirement, SupportedResponse, TokenExtra
from oneshot_webhook.core.config import PaymentTokenConfig
from oneshot_webhook.x402.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_DESCRIPTION = "OneShot API Webhook"
DEFAULT_MIME_TYPE = "application/json"
MAX_TIMEOUT_SECONDS = 60


def split_payment_token(payment_token: str) -> Tuple[str, str]:
    """
    Split "<network>:<contractAddress>" into its two parts.

    Raises:
        ConfigurationError: If either part is missing
    """
    network, sep, contract_address = payment_token.partition(":")
    if not sep or not network or not contract_address:
        raise ConfigurationError(
            f"Misconfiguration: Payment token '{payment_token}' must be in the form <network>:<contractAddress>"
        )
    return network, contract_address


def _duplicate_network_error(network: str) -> ConfigurationError:
    return ConfigurationError(
        f"Misconfiguration: Network {network} has multiple configured tokens. "
        f"You may only have one payment token per network."
    )


def check_token_config(tokens: Iterable[PaymentTokenConfig]) -> None:
    """
    Check the configured tokens without consulting the registry.

    Raises:
        ConfigurationError: On a malformed token or a repeated network
    """
    seen = set()
    for token in tokens:
        network, _ = split_payment_token(token.paymentToken)
        if network in seen:
            raise _duplicate_network_error(network)
        seen.add(network)


def build_payment_requirements(
    tokens: Iterable[PaymentTokenConfig],
    supported: SupportedResponse,
    resource: str,
    description: str = "",
    mime_type: str = ""
) -> List[PaymentRequirement]:
    """
    Build one PaymentRequirement per configured token.

    Args:
        tokens: The configured payment tokens, in order
        supported: The supported-token registry from the 1Shot API
        resource: The webhook URL being paid for
        description: Resource description (defaults to DEFAULT_DESCRIPTION)
        mime_type: Resource mime type (defaults to DEFAULT_MIME_TYPE)

    Returns:
        Requirements in configuration order

    Raises:
        ConfigurationError: On a repeated network, or a network or token the
            registry does not support
    """
    requirements: List[PaymentRequirement] = []
    configured_networks = set()

    for token in tokens:
        network, contract_address = split_payment_token(token.paymentToken)

        if network in configured_networks:
            raise _duplicate_network_error(network)
        configured_networks.add(network)

        kind = supported.find_kind(network)
        if kind is None:
            raise ConfigurationError(f"Supported network {network} not found")

        supported_token = kind.find_token(contract_address)
        if supported_token is None:
            raise ConfigurationError(f"Supported token {contract_address} not found")

        requirements.append(
            PaymentRequirement(
                scheme=kind.scheme,
                network=kind.network,
                maxAmountRequired=str(token.paymentAmount),
                resource=resource,
                description=description or DEFAULT_DESCRIPTION,
                mimeType=mime_type or DEFAULT_MIME_TYPE,
                payTo=token.payToAddress,
                maxTimeoutSeconds=MAX_TIMEOUT_SECONDS,
                asset=supported_token.contractAddress,
                extra=TokenExtra(name=supported_token.name, version=supported_token.version),
            )
        )

    return requirements
