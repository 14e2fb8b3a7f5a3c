"""
API key pool for the LLM provider.

Hands out keys round-robin so that up to three provider keys share the
request load. A key that fails three times in a row is taken out of
rotation until it succeeds again or every key is out, in which case all
keys are put back.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from labsync.logging_config import get_logger

logger = get_logger("key_pool")

MAX_CONSECUTIVE_ERRORS = 3


@dataclass
class KeyStats:
    key: str
    usage_count: int = 0
    error_count: int = 0
    last_used: Optional[datetime] = None
    is_available: bool = True


class ApiKeyPool:
    def __init__(self, keys: list[str]):
        self._keys = [
            KeyStats(key=key) for key in keys
            if key and not key.startswith("YOUR_")
        ]
        self._index = 0

        if not self._keys:
            logger.warning("No valid LLM API keys configured")
        else:
            logger.info(f"Loaded {len(self._keys)} API key(s) for load balancing")

    def __len__(self) -> int:
        return len(self._keys)

    def next_key(self) -> str:
        """Next available key, round-robin."""
        if not self._keys:
            raise RuntimeError("No LLM API keys configured. Set OPENAI_API_KEY in your .env file.")

        for _ in range(len(self._keys)):
            stats = self._keys[self._index]
            self._index = (self._index + 1) % len(self._keys)
            if stats.is_available:
                return self._mark_used(stats)

        self._reset_all()
        return self._mark_used(self._keys[0])

    def report_error(self, key: str) -> None:
        stats = self._find(key)
        if stats:
            stats.error_count += 1
            if stats.error_count >= MAX_CONSECUTIVE_ERRORS:
                stats.is_available = False
                logger.warning(f"Key temporarily disabled after {stats.error_count} errors")

    def report_success(self, key: str) -> None:
        stats = self._find(key)
        if stats:
            stats.error_count = 0
            stats.is_available = True

    def has_available_key(self) -> bool:
        return any(k.is_available for k in self._keys)

    def stats(self) -> dict:
        return {
            "total_keys": len(self._keys),
            "available_keys": sum(1 for k in self._keys if k.is_available),
            "keys": [
                {
                    "index": i + 1,
                    "usage_count": k.usage_count,
                    "error_count": k.error_count,
                    "is_available": k.is_available,
                    "last_used": k.last_used.isoformat() if k.last_used else "never",
                }
                for i, k in enumerate(self._keys)
            ],
        }

    def _mark_used(self, stats: KeyStats) -> str:
        stats.usage_count += 1
        stats.last_used = datetime.now(timezone.utc)
        return stats.key

    def _find(self, key: str) -> Optional[KeyStats]:
        for stats in self._keys:
            if stats.key == key:
                return stats
        return None

    def _reset_all(self) -> None:
        for stats in self._keys:
            stats.is_available = True
            stats.error_count = 0
        logger.info("All keys reset to available")
