# oneshot_webhook/x402/errors.py
"""
Error taxonomy for the x402 payment gateway.

- ConfigurationError: the webhook's token configuration cannot be honoured
  (duplicate network, unknown network or token). Answered with a 500.
- ProtocolViolation: the caller's payment proof is unacceptable. Always
  answered with a 402 carrying the accumulated reasons, never a 5xx.
- BackendError: a call to the 1Shot API failed (transport or malformed
  response). Fatal for the current request.
- SettlementAmbiguity: settlement failed in transport after a successful
  verification. Logged and continued with a placeholder transaction hash.
"""


class X402Error(Exception):
    """Base class for payment gateway errors."""


class ConfigurationError(X402Error):
    """Raised when the configured payment tokens are inconsistent."""


class ProtocolViolation(X402Error):
    """Raised when an inbound payment proof breaks the x402 protocol."""


class PaymentHeaderError(ProtocolViolation):
    """Raised when the x-payment header cannot be decoded."""


class BackendError(X402Error):
    """Raised when a 1Shot API call fails."""


class SettlementAmbiguity(X402Error):
    """
    Settlement outcome is unknown.

    The payment was verified but the settle call itself failed, so the
    transfer may or may not have happened on-chain.
    """
