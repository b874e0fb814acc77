"""
Signature Service for Store Receipts

Implements HMAC-SHA256 receipt signing and verification.
Stands in for the store's public-key signature scheme; callers treat
verify_receipt as a black box.
"""
import hmac
import hashlib
import json
from typing import Dict, Any, Optional
from ..config import settings


def create_canonical_json(data: Dict[str, Any]) -> str:
    """
    Create canonical JSON representation for signing.

    Ensures consistent serialization:
    - Sorted keys
    - No whitespace
    - UTF-8 encoding
    """
    return json.dumps(data, sort_keys=True, separators=(',', ':'))


def sign_receipt(original_json: str, secret_key: Optional[str] = None) -> str:
    """
    Sign a receipt using HMAC-SHA256.

    Args:
        original_json: Receipt JSON exactly as it will be delivered
        secret_key: HMAC secret (defaults to the configured store secret)

    Returns:
        Hexadecimal signature
    """
    key = secret_key or settings.store_signing_secret
    return hmac.new(
        key.encode('utf-8'),
        original_json.encode('utf-8'),
        hashlib.sha256
    ).hexdigest()


def verify_receipt(
    original_json: str,
    signature: str,
    secret_key: Optional[str] = None
) -> bool:
    """
    Verify a receipt signature using constant-time comparison.

    Args:
        original_json: Receipt JSON as received
        signature: Signature delivered with the receipt
        secret_key: HMAC secret (defaults to the configured store secret)

    Returns:
        True if signature valid, False otherwise (including empty signatures)
    """
    if not original_json or not signature:
        return False

    expected_signature = sign_receipt(original_json, secret_key)

    return hmac.compare_digest(expected_signature, signature)
