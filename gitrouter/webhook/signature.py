"""GitHub webhook header checks and X-Hub-Signature-256 verification."""

import hashlib
import hmac
from typing import Any, List, Mapping

DELIVERY_HEADER = "X-GitHub-Delivery"
EVENT_HEADER = "X-GitHub-Event"
SIGNATURE_HEADER = "X-Hub-Signature-256"
REQUIRED_HEADERS = (DELIVERY_HEADER, EVENT_HEADER, SIGNATURE_HEADER)

SIGNATURE_PREFIX = "sha256="


def get_header(headers: Mapping[str, Any], name: str) -> str | None:
    """Case-insensitive header lookup (plain dicts and http.server message headers)."""
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                value = candidate
                break
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def missing_headers(headers: Mapping[str, Any]) -> List[str]:
    """Names of required webhook headers that are absent or empty."""
    return [name for name in REQUIRED_HEADERS if get_header(headers, name) is None]


def compute_signature(secret: str, body: bytes) -> str:
    """Return the sha256=<hex> HMAC of body keyed with secret."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(secret: str, body: bytes, signature: str | None) -> bool:
    """Constant-time check of an X-Hub-Signature-256 value. An unset secret never verifies."""
    if not secret or not signature or not signature.startswith(SIGNATURE_PREFIX):
        return False
    expected = compute_signature(secret, body)
    return hmac.compare_digest(expected.encode("utf-8"), signature.strip().encode("utf-8"))
