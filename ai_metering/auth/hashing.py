"""
API key hashing utilities.

Security notes:
  • SHA-256 is used for key hashing — acceptable for API keys because
    they are high-entropy random strings (not low-entropy passwords).
  • Raw keys use the sk_ai_ prefix so they are recognisable in secret
    scanners and support tickets.
  • generate_api_key() returns the raw key exactly once. It is never stored.
"""

import hashlib
import secrets


KEY_PREFIX = "sk_ai_"
# Length of the stored, displayable key prefix (APIKey.prefix)
DISPLAY_PREFIX_LENGTH = 12


def hash_api_key(raw_key: str) -> str:
    """Return the SHA-256 hex digest used for storage and lookup."""
    return hashlib.sha256(raw_key.encode("utf-8")).hexdigest()


def generate_api_key() -> tuple[str, str, str]:
    """
    Generate a new API key for a user.

    Returns:
        (raw_key, key_hash, display_prefix)
    """
    raw_key = f"{KEY_PREFIX}{secrets.token_hex(32)}"  # 256 bits of entropy
    return raw_key, hash_api_key(raw_key), raw_key[:DISPLAY_PREFIX_LENGTH]
