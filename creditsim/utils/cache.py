"""
cache.py
--------
Memoization for full pipeline runs.

Each logical model (e.g. one user-selected deal) owns one cache slot
holding (input fingerprint, result).  A run recomputes only when the
fingerprint of its serialized inputs differs from the stored one; any
input change invalidates the slot.  Slots are never shared across keys.
"""

import dataclasses
import hashlib
import json
import logging
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


def _canonical(obj: Any) -> Any:
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {"__type__": type(obj).__name__, **{
            f.name: _canonical(getattr(obj, f.name)) for f in dataclasses.fields(obj)
        }}
    if isinstance(obj, dict):
        return {str(k): _canonical(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_canonical(v) for v in obj]
    return obj


def input_fingerprint(*parts: Any) -> str:
    """SHA-256 of the canonical JSON form of the given inputs."""
    payload = json.dumps([_canonical(p) for p in parts], sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class ResultCache:
    """One (fingerprint, result) slot per model key."""

    def __init__(self):
        self._store: dict[str, tuple[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, model_key: str, fingerprint: str) -> Optional[Any]:
        with self._lock:
            entry = self._store.get(model_key)
        if entry is not None and entry[0] == fingerprint:
            return entry[1]
        return None

    def set(self, model_key: str, fingerprint: str, result: Any) -> None:
        with self._lock:
            self._store[model_key] = (fingerprint, result)

    def get_or_compute(self, model_key: str, fingerprint: str,
                       compute: Callable[[], Any]) -> tuple[Any, bool]:
        """Returns (result, recomputed)."""
        cached = self.get(model_key, fingerprint)
        if cached is not None:
            logger.debug("cache hit for %s", model_key)
            return cached, False
        logger.info("recomputing %s (inputs changed)", model_key)
        result = compute()
        self.set(model_key, fingerprint, result)
        return result, True

    def invalidate(self, model_key: Optional[str] = None) -> None:
        with self._lock:
            if model_key is None:
                self._store.clear()
            else:
                self._store.pop(model_key, None)

    def __contains__(self, model_key: str) -> bool:
        return model_key in self._store
