"""
Signature Service for Paytm Checksums

Implements HMAC-SHA256 checksum generation and verification over flat
parameter maps exchanged with the gateway.
"""
import hmac
import hashlib
import json
import logging
from typing import Any, Dict, Mapping, Optional

from ..exceptions import SigningError

logger = logging.getLogger(__name__)

# Parameter carrying the checksum in every gateway message
SIGNATURE_FIELD = "CHECKSUMHASH"


def create_canonical_json(params: Mapping[str, Any]) -> str:
    """
    Create canonical JSON representation for signing.

    Ensures consistent serialization:
    - Signature field excluded
    - Values stringified (None becomes empty string)
    - Sorted keys
    - No whitespace
    """
    canonical = {
        str(key): "" if value is None else str(value)
        for key, value in params.items()
        if key != SIGNATURE_FIELD
    }
    return json.dumps(canonical, sort_keys=True, separators=(',', ':'))


def _digest(canonical_data: str, secret: str) -> str:
    return hmac.new(
        secret.encode('utf-8'),
        canonical_data.encode('utf-8'),
        hashlib.sha256
    ).hexdigest()


def sign(params: Mapping[str, Any], secret: Optional[str]) -> str:
    """
    Compute the checksum for a parameter map.

    Args:
        params: Gateway parameters (an existing CHECKSUMHASH is ignored)
        secret: Merchant key shared with the gateway

    Returns:
        Hex-encoded HMAC-SHA256 digest

    Raises:
        SigningError: If the secret is empty or absent
    """
    if not secret:
        raise SigningError("Merchant key is not configured; cannot sign gateway parameters")

    return _digest(create_canonical_json(params), secret)


def sign_params(params: Mapping[str, Any], secret: Optional[str]) -> Dict[str, Any]:
    """Return a copy of params with CHECKSUMHASH set."""
    signed = dict(params)
    signed[SIGNATURE_FIELD] = sign(params, secret)
    return signed


def verify(params: Any, secret: Optional[str], candidate: Any) -> bool:
    """
    Verify a checksum using constant-time comparison.

    Args:
        params: Parameters as received (the signature field itself is excluded)
        secret: Merchant key shared with the gateway
        candidate: Checksum claimed by the sender

    Returns:
        True if the checksum matches, False otherwise. Malformed input of any
        kind is a verification failure, never an exception.
    """
    if not secret or not isinstance(candidate, str) or not candidate:
        return False
    if not isinstance(params, Mapping):
        return False

    try:
        expected = _digest(create_canonical_json(params), secret)
    except (TypeError, ValueError, UnicodeError) as e:
        logger.debug(f"Checksum canonicalization failed: {e}")
        return False

    try:
        return hmac.compare_digest(expected, candidate)
    except TypeError:
        # non-ASCII candidate strings are rejected by compare_digest
        return False
