"""
Helper functions for common operations.
"""
import hashlib
import hmac
import secrets


def generate_cache_key(*parts: str) -> str:
    """
    Generate a cache key from parts.

    Example:
        >>> generate_cache_key("sso", "code", "abc")
        'sso:code:abc'
    """
    return ":".join(str(part) for part in parts)


def calculate_hash(data: str) -> str:
    """
    Calculate SHA256 hash of data.

    Example:
        >>> calculate_hash("hello world")
        'b94d27b9934d3e08a52e52d7da7dabfac484efe37a5380ee9088f7ace2efcde9'
    """
    return hashlib.sha256(data.encode()).hexdigest()


def code_fingerprint(code: str | None) -> str:
    """
    Short, non-reversible identifier for a secret value, safe for logs.

    Example:
        >>> code_fingerprint(None)
        '-'
    """
    if not code:
        return "-"
    return calculate_hash(code)[:12]


def generate_opaque_token(num_bytes: int = 32) -> str:
    """URL-safe random handle carrying no information about what it refers to."""
    return secrets.token_urlsafe(num_bytes)


def constant_time_equals(a: str, b: str) -> bool:
    """
    Compare two strings in constant time.

    Both sides are compared as UTF-8 bytes, so request-supplied values with
    non-ASCII characters are a mismatch rather than a TypeError.

    Example:
        >>> constant_time_equals("été", "ete")
        False
    """
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
