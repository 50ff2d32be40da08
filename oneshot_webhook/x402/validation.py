# oneshot_webhook/x402/validation.py
"""
Validation of the inbound x-payment header.

The header is attacker controlled, so it goes through two phases before any
field is trusted:

1. Shape: every required field is present with the right JSON type.
2. Semantics: the payment matches one of our payment requirements (network,
   amount, payee) and its authorization window covers the current time.

Both phases are pure; neither does I/O.
"""
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from x402.encoding import safe_base64_decode

from oneshot_webhook.api.models.x402 import PaymentRequirement
from oneshot_webhook.x402.errors import PaymentHeaderError

logger = logging.getLogger(__name__)

VALID = "valid"

# Expected structure of a decoded x-payment header ("exact" EVM scheme)
PAYMENT_PAYLOAD_SHAPE: Dict[str, Any] = {
    "x402Version": "number",
    "scheme": "string",
    "network": "string",
    "payload": {
        "authorization": {
            "from": "string",
            "to": "string",
            "value": "string",
            "validAfter": "string",
            "validBefore": "string",
            "nonce": "string",
        },
        "signature": "string",
    },
}

_INTEGER_RE = re.compile(r"[+-]?[0-9]+")


def decode_payment_header(header_value: str) -> Dict[str, Any]:
    """
    Decode the x-payment header into a dict.

    Args:
        header_value: Base64-encoded UTF-8 JSON

    Returns:
        The decoded JSON object (not yet validated)

    Raises:
        PaymentHeaderError: If the header is not base64 of a JSON object
    """
    try:
        decoded_str = safe_base64_decode(header_value)
    except (ValueError, UnicodeDecodeError) as e:
        raise PaymentHeaderError(f"invalid base64 encoding ({e})") from e

    try:
        payment = json.loads(decoded_str)
    except json.JSONDecodeError as e:
        raise PaymentHeaderError(f"invalid JSON ({e.msg})") from e

    if not isinstance(payment, dict):
        raise PaymentHeaderError("expected a JSON object")
    return payment


def json_type_name(value: Any) -> str:
    """Name a decoded JSON value's type the way the shape errors report it."""
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if value is None:
        return "null"
    if isinstance(value, list):
        return "array"
    return "object"


def check_shape(expected: Dict[str, Any], actual: Dict[str, Any], path: str = "") -> List[str]:
    """
    Compare a decoded object against an expected shape.

    Returns a list of human readable problems, each naming the dotted path
    of the field. A field expected to be an object that is missing or not an
    object is reported once; its children are only checked when it is an
    object.
    """
    problems = []
    for key, expected_type in expected.items():
        current_path = f"{path}.{key}" if path else key

        if key not in actual:
            problems.append(f"Missing field: {current_path}")
        elif isinstance(expected_type, dict):
            if not isinstance(actual[key], dict):
                problems.append(f"Invalid type at {current_path}: expected object")
            else:
                problems.extend(check_shape(expected_type, actual[key], current_path))
        else:
            actual_type = json_type_name(actual[key])
            if actual_type != expected_type:
                problems.append(
                    f"Invalid type at {current_path}: expected {expected_type}, got {actual_type}"
                )
    return problems


def validate_payment_shape(payment: Dict[str, Any]) -> str:
    """
    Check that a decoded x-payment header has every required field.

    Returns:
        "valid", or the problems joined with "; "
    """
    problems = check_shape(PAYMENT_PAYLOAD_SHAPE, payment)
    if problems:
        return "; ".join(problems)
    return VALID


@dataclass
class PaymentVerification:
    """Result of the semantic check of a payment against our requirements."""
    valid: bool
    errors: str
    payment_requirements: Optional[PaymentRequirement] = None


def parse_integer(value: Any) -> int:
    """
    Parse a decimal integer string (or int) with arbitrary precision.

    Raises:
        ValueError: For anything else, including empty strings and floats
    """
    if isinstance(value, bool):
        raise ValueError(f"not an integer: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and _INTEGER_RE.fullmatch(value.strip()):
        return int(value.strip())
    raise ValueError(f"not an integer: {value!r}")


def find_requirement(
    network: Optional[str],
    requirements: Sequence[PaymentRequirement]
) -> Optional[PaymentRequirement]:
    """Find the requirement for a network, ignoring case."""
    wanted = (network or "").lower()
    for requirement in requirements:
        if requirement.network.lower() == wanted:
            return requirement
    return None


def verify_payment_details(
    payment: Dict[str, Any],
    requirements: Sequence[PaymentRequirement],
    now: Optional[int] = None
) -> PaymentVerification:
    """
    Check a shape-valid payment against our payment requirements.

    Checks the network, that the authorized value covers maxAmountRequired
    (equal is enough), that the payee is ours and that the authorization
    window covers the current time. Every check runs, and all failures are
    reported together.

    Args:
        payment: A decoded x-payment header that passed the shape check
        requirements: Our payment requirements, one per network
        now: Current Unix time in seconds (defaults to the clock)

    Returns:
        A PaymentVerification carrying the matched requirement, if any
    """
    if now is None:
        now = int(time.time())
    errors = []

    network = payment.get("network")
    requirement = find_requirement(network, requirements)
    if requirement is None:
        errors.append(f"Invalid or unsupported network: {network}")
    else:
        authorization = (payment.get("payload") or {}).get("authorization") or {}

        try:
            required = parse_integer(requirement.maxAmountRequired)
            actual = parse_integer(authorization.get("value"))
            if actual < required:
                errors.append(f"Value too low: got {actual}, requires at least {required}")
        except ValueError:
            errors.append("Invalid value: must be numeric string")

        to_address = authorization.get("to")
        if not isinstance(to_address, str):
            errors.append("Missing 'to' field in authorization")
        elif to_address.lower() != requirement.payTo.lower():
            errors.append(f"Invalid 'to' address: expected {requirement.payTo}, got {to_address}")

        try:
            valid_after = parse_integer(authorization.get("validAfter"))
            valid_before = parse_integer(authorization.get("validBefore"))
        except ValueError:
            errors.append("Invalid validAfter or validBefore timestamps")
        else:
            if valid_after > now:
                errors.append(
                    f"Payment has not activated, validAfter is {valid_after} but the server time is {now}"
                )
            if valid_before < now:
                errors.append(
                    f"Payment has expired, validBefore is {valid_before} but the server time is {now}"
                )

    return PaymentVerification(
        valid=not errors,
        errors="; ".join(errors),
        payment_requirements=requirement,
    )
