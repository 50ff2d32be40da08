# oneshot_webhook/x402/__init__.py
"""
x402 Payment Protocol Integration Module.

This module gates the webhook behind an x402 stablecoin micropayment that is
verified and settled through the 1Shot API.

Key components:
- cache: supported-token registry cache
- requirements: payment requirements built from the configured tokens
- validation: x-payment header decoding, shape and semantic checks
- settlement: verify-then-settle coordination with the 1Shot API
- registration: single-flight x402scan directory registration
- responses: 402 challenge and success responses
- access: IP allowlist
- audit: payment event log
- handler: the request flow tying the above together

Configuration is loaded from environment variables via
oneshot_webhook.core.config.
"""

__version__ = "0.1.0"

X402_VERSION = 1
X_PAYMENT_HEADER = "x-payment"
