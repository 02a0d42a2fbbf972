"""Signature engine — HMAC signing and hash-chain links for audit entries.

Canonical form
--------------
The signed payload is a JSON object with sorted keys and compact
separators, encoded as UTF-8, over exactly ``SIGNED_FIELDS``. Absent values
are ``null``. Timestamps are rendered as UTC with millisecond precision
(``2026-01-31T12:00:00.123Z``).

Chain link
----------
``previous_hash`` of an entry is ``sha256(signature || timestamp)`` of the
entry appended immediately before it, both taken from the predecessor.
"""

import enum
import hashlib
import hmac
import json
from datetime import datetime, timezone
from typing import Any

from sentinel.audit_ledger.exceptions import ConfigurationError

SIGNED_FIELDS = (
    "timestamp",
    "event_type",
    "user_id",
    "session_id",
    "action",
    "resource",
    "resource_id",
    "changes",
    "metadata",
    "ip_address",
    "result",
    "error_message",
    "risk_score",
    "previous_hash",
)


def truncate_to_millis(ts: datetime) -> datetime:
    """Drop sub-millisecond precision so stored and signed timestamps agree."""
    return ts.replace(microsecond=(ts.microsecond // 1000) * 1000)


def canonical_timestamp(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    ts = ts.astimezone(timezone.utc)
    return f"{ts:%Y-%m-%dT%H:%M:%S}.{ts.microsecond // 1000:03d}Z"


def canonical_payload(fields: dict[str, Any]) -> bytes:
    """Serialize the signed subset of ``fields`` deterministically."""
    payload = {}
    for name in SIGNED_FIELDS:
        value = fields.get(name)
        if name == "timestamp" and isinstance(value, datetime):
            value = canonical_timestamp(value)
        elif isinstance(value, enum.Enum):
            value = value.value
        payload[name] = value
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")


def chain_hash(signature: str, timestamp: datetime) -> str:
    """Link value for the entry that follows one with this signature and timestamp."""
    material = (signature + canonical_timestamp(timestamp)).encode("utf-8")
    return hashlib.sha256(material).hexdigest()


class AuditSigner:
    """Keyed HMAC-SHA256 signer. Construction fails fast on a bad key."""

    def __init__(self, key: str, *, min_key_length: int = 32):
        if not key:
            raise ConfigurationError("AUDIT_SIGNING_KEY is not configured; refusing to start without ledger signing")
        if len(key) < min_key_length:
            raise ConfigurationError(
                f"AUDIT_SIGNING_KEY must be at least {min_key_length} characters (got {len(key)})"
            )
        self._key = key.encode("utf-8")

    def sign(self, fields: dict[str, Any]) -> str:
        return hmac.new(self._key, canonical_payload(fields), hashlib.sha256).hexdigest()

    def verify(self, fields: dict[str, Any], signature: str) -> bool:
        return hmac.compare_digest(self.sign(fields), signature or "")

    @staticmethod
    def chain_hash(signature: str, timestamp: datetime) -> str:
        return chain_hash(signature, timestamp)
