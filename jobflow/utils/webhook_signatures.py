"""
Webhook signature validation and payload hashing.

GoHighLevel workflow webhooks are unsigned by default; when
WEBHOOK_SIGNING_KEY is configured the sender must include an
HMAC-SHA256 of the raw body in X-Webhook-Signature.
"""
import hashlib
import hmac
import logging

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"


def validate_hmac_sha256(
    secret: str,
    signature: str,
    body: bytes,
    header_prefix: str = "sha256=",
) -> bool:
    """
    Validate HMAC-SHA256 webhook signature.
    Handles signatures with optional prefix (e.g., "sha256=...").
    """
    if not secret or not signature:
        return False

    sig = signature
    if sig.startswith(header_prefix):
        sig = sig[len(header_prefix):]

    expected = hmac.new(
        secret.encode("utf-8"),
        body,
        hashlib.sha256,
    ).hexdigest()
    return hmac.compare_digest(expected, sig.lower())


def compute_payload_hash(body: bytes) -> str:
    """Compute SHA-256 hash of raw payload for audit."""
    return hashlib.sha256(body).hexdigest()


def is_signature_valid(request_headers, body: bytes) -> bool:
    """
    Check the inbound webhook signature against the configured key.
    Returns True when no key is configured (signing disabled).
    """
    from jobflow.config import get_settings
    secret = get_settings().webhook_signing_key
    if not secret:
        return True
    signature = request_headers.get(SIGNATURE_HEADER, "")
    if not signature:
        logger.warning("Missing %s header on signed webhook endpoint", SIGNATURE_HEADER)
        return False
    return validate_hmac_sha256(secret, signature, body)
