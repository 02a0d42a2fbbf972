"""Secret redaction and JSON normalisation for ledger payloads.

Keys are matched by whole segments, so ``reset_token`` and ``apiKey`` are
masked while ``token_family`` and ``idempotency_key`` are kept.
"""

import json
import re
from typing import Any

REDACTED = "[REDACTED]"

# A key whose last segment is one of these is a credential.
SENSITIVE_SEGMENTS = frozenset({"password", "passwd", "secret", "token", "cvv", "cvc", "pin"})
# Multi-segment names that end a sensitive key.
SENSITIVE_SUFFIXES = ("api_key", "access_key", "private_key", "secret_key", "signing_key", "card_number")

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_SEPARATORS = re.compile(r"[^a-z0-9]+")


def normalize_key(key: Any) -> str:
    """``"resetToken"`` / ``"reset-token"`` -> ``"reset_token"``."""
    snake = _CAMEL_BOUNDARY.sub("_", str(key)).lower()
    return _SEPARATORS.sub("_", snake).strip("_")


def is_sensitive_key(key: Any) -> bool:
    name = normalize_key(key)
    if not name:
        return False
    if name.rsplit("_", 1)[-1] in SENSITIVE_SEGMENTS:
        return True
    return any(name == suffix or name.endswith("_" + suffix) for suffix in SENSITIVE_SUFFIXES)


def redact_sensitive(value: Any) -> Any:
    """Replace values whose key names a credential, recursing into containers."""
    if isinstance(value, dict):
        return {
            k: REDACTED if is_sensitive_key(k) else redact_sensitive(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [redact_sensitive(v) for v in value]
    return value


def to_json_compatible(value: Any) -> Any:
    """Round-trip through JSON so the stored value is exactly what gets signed."""
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))
