"""Per-file memo of provider output.

A stored result is reused only while the file keeps the same path, size and
modification time and the provider runs with the same options. Anything
else is a miss and the provider analyzes the file again.
"""
from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from ..core.protocols import ResultRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CacheKey:
    """File state and provider options at the moment analysis started."""
    provider: str
    path: str
    mtime_ns: int
    size: int
    options: str


class ResultCache:
    """Lookup and store provider payloads through a ResultRepository.

    Storage errors are logged and treated as misses; analysis never fails
    because the cache is unavailable.
    """

    def __init__(self, repository: ResultRepository):
        self._repository = repository
        self.hits = 0
        self.misses = 0

    @staticmethod
    def fingerprint(options: dict[str, Any]) -> str:
        encoded = json.dumps(options, sort_keys=True, default=str)
        return hashlib.sha256(encoded.encode("utf-8")).hexdigest()

    def key_for(self, provider: str, item: str, options: dict[str, Any]) -> Optional[CacheKey]:
        """Key for the file as it is now; None if it cannot be stat'ed."""
        path = Path(item)
        try:
            stat = path.stat()
        except OSError:
            return None
        if not path.is_file():
            return None
        return CacheKey(
            provider=provider,
            path=str(path.resolve()),
            mtime_ns=stat.st_mtime_ns,
            size=stat.st_size,
            options=self.fingerprint(options),
        )

    def get(self, key: CacheKey) -> Optional[dict[str, Any]]:
        try:
            payload = self._repository.load_result(key.provider, key.path, key.mtime_ns, key.size, key.options)
        except sqlite3.Error as e:
            logger.warning(f"Result cache read failed for {key.path}: {e}")
            payload = None

        if payload is None:
            self.misses += 1
        else:
            self.hits += 1
            logger.debug(f"[{key.provider}] cached result for {key.path}")
        return payload

    def put(self, key: CacheKey, payload: dict[str, Any]) -> None:
        try:
            self._repository.save_result(key.provider, key.path, key.mtime_ns, key.size, key.options, payload)
        except sqlite3.Error as e:
            logger.warning(f"Result cache write failed for {key.path}: {e}")
