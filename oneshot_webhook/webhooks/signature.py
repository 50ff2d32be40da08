# oneshot_webhook/webhooks/signature.py
"""
Ed25519 verification of signed 1Shot webhooks.

1Shot signs the webhook body (minus its "signature" field) serialized as
canonical JSON: object keys sorted at every level, compact separators, no
whitespace. The signer is JavaScript, so the text has to be exactly what
JSON.stringify produces for the key-sorted object:

- keys that are array indices ("0" to "4294967294", no leading zeros) come
  first in numeric order, the remaining keys follow in UTF-16 code unit order
- numbers use the ECMAScript Number-to-String rules: shortest round-trip
  digits, no ".0" on integral values, exponent form ("1e+21", "1e-7") below
  1e-6 and from 1e21 up
"""
import base64
import json
import logging
import re
from typing import Any

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

logger = logging.getLogger(__name__)

_ARRAY_INDEX = re.compile(r"0|[1-9][0-9]*")
_MAX_ARRAY_INDEX = 2 ** 32 - 2
# Integers beyond this are not exact as JavaScript numbers
_MAX_SAFE_INTEGER = 2 ** 53


def _utf16_order(key: str) -> bytes:
    return key.encode("utf-16-be", "surrogatepass")


def _is_array_index(key: str) -> bool:
    return _ARRAY_INDEX.fullmatch(key) is not None and int(key) <= _MAX_ARRAY_INDEX


def _ordered_keys(obj: dict) -> list:
    indices = sorted((key for key in obj if _is_array_index(key)), key=int)
    names = sorted((key for key in obj if not _is_array_index(key)), key=_utf16_order)
    return indices + names


def canonicalize(value: Any) -> Any:
    """
    Recursively sort object keys in JavaScript property order.

    Lists keep their element order but each element is canonicalized;
    scalars are returned untouched.
    """
    if isinstance(value, dict):
        return {key: canonicalize(value[key]) for key in _ordered_keys(value)}
    if isinstance(value, (list, tuple)):
        return [canonicalize(item) for item in value]
    return value


def format_number(value: float) -> str:
    """
    Format a number the way JavaScript's Number.prototype.toString does.

    Raises:
        ValueError: for NaN and infinities, which JSON cannot carry
    """
    if isinstance(value, int) and abs(value) <= _MAX_SAFE_INTEGER:
        return str(value)
    value = float(value)
    if value != value or value in (float("inf"), float("-inf")):
        raise ValueError(f"Out of range float values are not JSON compliant: {value!r}")
    if value == 0:
        return "0"
    if value < 0:
        return "-" + format_number(-value)

    # repr gives the shortest digits that round-trip, as JavaScript does
    mantissa, _, exponent = repr(value).partition("e")
    int_part, _, fraction = mantissa.partition(".")
    digits = (int_part + fraction).rstrip("0")
    stripped = digits.lstrip("0")
    point = len(int_part) + int(exponent or 0) - (len(digits) - len(stripped))
    digits = stripped
    count = len(digits)

    if count <= point <= 21:
        return digits + "0" * (point - count)
    if 0 < point <= 21:
        return f"{digits[:point]}.{digits[point:]}"
    if -6 < point <= 0:
        return "0." + "0" * -point + digits

    exp = point - 1
    sign = "+" if exp > 0 else "-"
    head = digits if count == 1 else f"{digits[0]}.{digits[1:]}"
    return f"{head}e{sign}{abs(exp)}"


def _serialize(value: Any) -> str:
    if isinstance(value, dict):
        members = (f"{_serialize(str(key))}:{_serialize(item)}" for key, item in value.items())
        return "{" + ",".join(members) + "}"
    if isinstance(value, list):
        return "[" + ",".join(_serialize(item) for item in value) + "]"
    if value is None or isinstance(value, (bool, str)):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, (int, float)):
        return format_number(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def canonical_json(value: Any) -> str:
    """Serialize a value as canonical JSON text."""
    return _serialize(canonicalize(value))


def verify_signature(public_key: str, signature: str, payload: Any) -> bool:
    """
    Verify an Ed25519 signature over the canonical form of a payload.

    Args:
        public_key: base64 encoded 32 byte Ed25519 public key
        signature: base64 encoded 64 byte signature
        payload: the signed data with the signature field already removed

    Returns:
        True if the signature is valid. Any failure (bad base64, malformed
        key, serialization error, mismatched signature) returns False.
    """
    try:
        public_key_bytes = base64.b64decode(public_key)
        signature_bytes = base64.b64decode(signature)
        message = canonical_json(payload).encode("utf-8")

        Ed25519PublicKey.from_public_bytes(public_key_bytes).verify(signature_bytes, message)
        return True
    except Exception as e:
        logger.debug(f"Signature verification failed: {type(e).__name__}")
        return False
