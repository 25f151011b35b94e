"""Idempotency key validation and payload fingerprinting."""

import hashlib
import json
import re

from .exceptions import MalformedKeyError, MissingKeyError

_UUID_PATTERN = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}",
    re.IGNORECASE,
)


def validate_key(key: object) -> str:
    """Check a client-supplied idempotency key and normalise it.

    Args:
        key: Raw header value (may be None)

    Returns:
        The key in lower case, so that case variants share one record

    Raises:
        MissingKeyError: If the key is absent or blank
        MalformedKeyError: If the key is not 8-4-4-4-12 hex groups
    """
    if key is None or (isinstance(key, str) and key.strip() == ""):
        raise MissingKeyError()

    if not isinstance(key, str) or not _UUID_PATTERN.fullmatch(key):
        raise MalformedKeyError(str(key))

    return key.lower()


def fingerprint(payload: object) -> str:
    """Compute a stable digest of a request payload.

    Dict key order does not affect the digest; list order does.

    Args:
        payload: Decoded request body

    Returns:
        Hex SHA-256 of the payload's canonical JSON form
    """
    canonical = json.dumps(
        _normalize_value(payload),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode()).hexdigest()


def _normalize_value(value: object) -> object:
    """Reduce a value to JSON-compatible primitives."""
    if isinstance(value, (str, int, float, bool, type(None))):
        return value

    if isinstance(value, (list, tuple)):
        return [_normalize_value(v) for v in value]

    if isinstance(value, dict):
        return {str(k): _normalize_value(v) for k, v in value.items()}

    # Sets have no order of their own
    if isinstance(value, set):
        return sorted(json.dumps(_normalize_value(v)) for v in value)

    # Fallback: use str (covers Decimal and dates)
    return str(value)
