"""
Digest helpers.

SHA-256 is the collision-resistant primitive behind three things:

- identity fingerprints: sha256(name + email), hex, used for sybil checks
- email-ownership proofs: raw sha256(email) bytes
- audit journal chaining: sha256 over canonical JSON of a receipt

Canonical JSON follows RFC 8785 for the value types receipts carry
(str, int, bool, None, lists and string-keyed mappings). Floats are
rejected; no receipt field needs one.
"""
from __future__ import annotations

import hashlib
import hmac
import json
from collections.abc import Mapping, Sequence
from typing import Any, Union

BytesLike = Union[bytes, bytearray, memoryview]


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def fingerprint(name: str, email: str) -> str:
    """Identity fingerprint over the concatenation of name and email."""
    return sha256_hex((name + email).encode("utf-8"))


def email_proof(email: str) -> bytes:
    """The proof a user presents to show they own ``email``."""
    return hashlib.sha256(email.encode("utf-8")).digest()


def digests_match(expected: BytesLike, supplied: Any) -> bool:
    """Bit-for-bit, constant-time comparison. Non-bytes never match."""
    if not isinstance(supplied, (bytes, bytearray, memoryview)):
        return False
    return hmac.compare_digest(bytes(expected), bytes(supplied))


# ---------------------------------------------------------------------------
# Canonical JSON
# ---------------------------------------------------------------------------

def canonical_json(obj: Any) -> bytes:
    """Serialize ``obj`` to canonical JSON as UTF-8 bytes."""
    return _serialize(obj).encode("utf-8")


def canonical_hash(obj: Any) -> str:
    """SHA-256 hex digest of ``canonical_json(obj)``."""
    return sha256_hex(canonical_json(obj))


def _serialize(value: Any) -> str:
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, str):
        return _encode_string(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        raise TypeError("floats are not permitted in canonical receipts")
    if isinstance(value, Mapping):
        items = []
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError("canonical JSON requires string keys")
            items.append((key, item))
        items.sort(key=lambda kv: kv[0].encode("utf-16-be"))
        return "{" + ",".join(f"{_encode_string(k)}:{_serialize(v)}" for k, v in items) + "}"
    if isinstance(value, Sequence) and not isinstance(value, (bytes, bytearray, str)):
        return "[" + ",".join(_serialize(item) for item in value) + "]"
    raise TypeError(f"unsupported type for canonical JSON: {type(value)!r}")


def _encode_string(value: str) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


__all__ = [
    "sha256_hex",
    "fingerprint",
    "email_proof",
    "digests_match",
    "canonical_json",
    "canonical_hash",
]
