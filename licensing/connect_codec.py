"""
Wire codec for the /api/connect endpoint.

Request:  encryptedData = b64( xor( b64("{key}_{uuid}"), secret ) )
Response: b64( xor( json({data, dataString, signature, timestamp}), secret ) )

JSON is compact with sorted keys so the client can recompute the signature
over the exact dataString it receives.
"""
import base64
import json
import time
from typing import Any, Dict, Tuple

from licensing.exceptions import ValidationError


def xor_bytes(data: bytes, key: bytes) -> bytes:
    if not key:
        raise ValueError("XOR key must not be empty")
    return bytes(b ^ key[i % len(key)] for i, b in enumerate(data))


def encrypt(plaintext: str, secret: str) -> str:
    return base64.b64encode(xor_bytes(plaintext.encode("utf-8"), secret.encode("utf-8"))).decode("ascii")


def decrypt(ciphertext: str, secret: str) -> str:
    raw = base64.b64decode(ciphertext)
    return xor_bytes(raw, secret.encode("utf-8")).decode("latin-1")


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def signature(data_string: str, timestamp: int, secret: str) -> str:
    """djb2 over "data|timestamp|secret", 32-bit unsigned, hex padded to 16 chars."""
    message = f"{data_string}|{timestamp}|{secret}"
    value = 5381
    # JavaScript charCodeAt works on UTF-16 code units
    encoded = message.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        unit = encoded[i] | (encoded[i + 1] << 8)
        value = (((value << 5) + value) + unit) & 0xFFFFFFFF
    return format(value, "x").rjust(16, "0")[:16]


# ==========================================================
#                  REQUEST
# ==========================================================
def encode_request(key: str, uuid: str, secret: str) -> str:
    inner = base64.b64encode(f"{key}_{uuid}".encode("utf-8")).decode("ascii")
    return encrypt(inner, secret)


def decode_request(encrypted_data: str, secret: str) -> Tuple[str, str]:
    """Return (key, uuid); ValidationError on anything malformed."""
    try:
        inner = decrypt(encrypted_data, secret)
        key_uuid = base64.b64decode(inner).decode("utf-8")
    except (ValueError, UnicodeDecodeError):
        raise ValidationError("Invalid key format")

    parts = key_uuid.split("_")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        raise ValidationError("Invalid key format")
    return parts[0], parts[1]


# ==========================================================
#                  RESPONSE
# ==========================================================
def encode_response(data: Dict[str, Any], secret: str, timestamp: int = None) -> str:
    if timestamp is None:
        timestamp = int(time.time() * 1000)
    data_string = canonical_json(data)
    payload = {
        "data": data,
        "dataString": data_string,
        "signature": signature(data_string, timestamp, secret),
        "timestamp": timestamp,
    }
    return encrypt(canonical_json(payload), secret)


def decode_response(encrypted: str, secret: str, verify: bool = True) -> Dict[str, Any]:
    raw = base64.b64decode(encrypted)
    payload = json.loads(xor_bytes(raw, secret.encode("utf-8")).decode("utf-8"))
    if verify:
        expected = signature(payload["dataString"], payload["timestamp"], secret)
        if expected != payload["signature"]:
            raise ValidationError("Response signature mismatch")
    return payload
