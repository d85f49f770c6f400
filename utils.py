from datetime import datetime, timezone
from decimal import Decimal
from flask import current_app, jsonify, request
import ipaddress
import math
import re

MAX_IP_LENGTH = 64


def utcnow():
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value):
    if value is None:
        return None
    return value.isoformat(timespec="milliseconds") + "Z"


def parse_datetime(value):
    """Parse an ISO-8601 string (date-only or full, optional Z/offset) into naive UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"Invalid date: {value}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def money(value):
    """Render a Decimal balance/price as a JSON number."""
    if value is None:
        return 0
    value = Decimal(value)
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def is_number(value):
    """Real, finite numbers only. JSON NaN and Infinity are rejected."""
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return False
    if isinstance(value, Decimal):
        return value.is_finite()
    if isinstance(value, float):
        return math.isfinite(value)
    return True


def validate_email(email):
    pattern = r'^[^\s@]+@[^\s@]+\.[^\s@]+$'
    return re.match(pattern, email or "") is not None


def normalize_ip(value):
    value = (value or "").strip()
    if not value or len(value) > MAX_IP_LENGTH:
        return None
    try:
        return str(ipaddress.ip_address(value))
    except ValueError:
        return None


def client_ip():
    """First X-Forwarded-For hop, then X-Real-IP, then the socket peer. Malformed values are skipped."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        first = normalize_ip(forwarded.split(",")[0])
        if first:
            return first
    real_ip = normalize_ip(request.headers.get("X-Real-IP"))
    if real_ip:
        return real_ip
    return (request.remote_addr or "unknown")[:MAX_IP_LENGTH]


def get_json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# ==========================================================
#                  RESPONSE ENVELOPE
# ==========================================================
def envelope(status=True, data=None, reason="", **extra):
    body = {"status": bool(status), "data": data, "reason": reason}
    if current_app.config.get("LEGACY_ENVELOPE_FIELDS", True):
        body["success"] = body["status"]
        body["message"] = reason
    body.update(extra)
    return body


def api_response(data=None, reason="", http_status=200, **extra):
    return jsonify(envelope(True, data, reason, **extra)), http_status


def api_error(reason, http_status=400, data=None, **extra):
    return jsonify(envelope(False, data, reason, **extra)), http_status
