from __future__ import annotations

"""
nosqlkit.core.utils
===================

Low-level helpers with **no external dependencies**:
- Stable hashing for JSON-like payloads (row de-duplication).
- Compact JSON serialization and size estimation for request limits.
- Exponential backoff with additive jitter.
- NanoID generator for operation ids.
"""

import json
import random
from hashlib import blake2b
from secrets import choice
from typing import Any

from .types import DEFAULT_BLAKE2_DIGEST_SIZE, DEFAULT_NANOID_ALPHABET, DEFAULT_NANOID_SIZE


def _json_default(o: Any) -> Any:
    if isinstance(o, (bytes, bytearray, memoryview)):
        return bytes(o).hex()
    if hasattr(o, "isoformat"):
        return o.isoformat()
    if hasattr(o, "model_dump"):
        return o.model_dump()
    return str(o)


def stable_hash(payload: Any, *, digest_size: int = DEFAULT_BLAKE2_DIGEST_SIZE) -> str:
    """
    Compute a stable hash of an arbitrary JSON-like payload.
    - Uses UTF-8 JSON with sorted keys and no whitespace for deterministic encoding.
    - BLAKE2b with configurable digest size (default 20 bytes -> 40 hex chars).

    NOTE: This is **not** a cryptographic signature; use it for de-duplication keys.
    """
    data = json.dumps(
        payload,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    ).encode("utf-8")
    return blake2b(data, digest_size=digest_size).hexdigest()


def dumps(x: Any) -> bytes:
    """Compact JSON dump to UTF-8 bytes (ensure_ascii=False, no spaces)."""
    return json.dumps(x, ensure_ascii=False, separators=(",", ":"), default=_json_default).encode("utf-8")


def estimate_size(x: Any) -> int:
    """
    Approximate serialized size of a row, key or sub-operation in bytes.

    The wire format is not JSON, but the compact JSON length tracks it closely
    enough for client-side limit checks and memory accounting.
    """
    if x is None:
        return 0
    if isinstance(x, (bytes, bytearray)):
        return len(x)
    return len(dumps(x))


def backoff_ms(attempt: int, base_ms: int, *, rng: random.Random | None = None) -> int:
    """
    Exponential backoff with additive jitter:
        base_ms * 2**(attempt - 1) + uniform integer in [0, base_ms)

    Examples:
        backoff_ms(1, 1000) -> [1000..1999]
        backoff_ms(3, 1000) -> [4000..4999]
    """
    if base_ms <= 0:
        return 0
    n = max(1, int(attempt))
    r = rng or random
    return (1 << (n - 1)) * base_ms + r.randrange(base_ms)


def nanoid(size: int = DEFAULT_NANOID_SIZE, alphabet: str = DEFAULT_NANOID_ALPHABET) -> str:
    """Generate a URL-safe NanoID (cryptographically strong)."""
    if size <= 0:
        raise ValueError("size must be positive")
    if not alphabet:
        raise ValueError("alphabet must be a non-empty string")
    return "".join(choice(alphabet) for _ in range(size))
