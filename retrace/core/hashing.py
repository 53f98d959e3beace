"""Stable hashing helpers."""

import hashlib
import json
from typing import Any, Optional


def create_hash(payload: Any, length: Optional[int] = None) -> str:
    """
    Return a stable sha256 hex digest for any JSON-serializable payload.

    Args:
        payload: Value to hash; strings are hashed as-is
        length: Optional prefix length; falsy values keep the full digest
    """
    if isinstance(payload, str):
        serialized = payload.encode("utf-8")
    else:
        try:
            serialized = json.dumps(
                payload, sort_keys=True, separators=(",", ":")
            ).encode("utf-8")
        except TypeError:
            serialized = str(payload).encode("utf-8", errors="ignore")

    digest = hashlib.sha256(serialized).hexdigest()
    return digest[:length] if length else digest
