"""Bounded tile-hash -> recognized text cache."""

import threading
from collections import OrderedDict
from typing import Optional


class TileTextCache:
    """
    Thread-safe LRU cache of recognizer output keyed by tile content hash.

    Unchanged tiles (same pixels, same hash) skip the recognizer entirely.
    A max_size of 0 disables caching.
    """

    def __init__(self, max_size: int = 512):
        self.max_size = max_size
        self._entries: "OrderedDict[str, str]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, tile_hash: Optional[str]) -> Optional[str]:
        if not tile_hash or self.max_size <= 0:
            return None
        with self._lock:
            text = self._entries.get(tile_hash)
            if text is None:
                self.misses += 1
                return None
            self._entries.move_to_end(tile_hash)
            self.hits += 1
            return text

    def put(self, tile_hash: Optional[str], text: str) -> None:
        if not tile_hash or self.max_size <= 0:
            return
        with self._lock:
            self._entries[tile_hash] = text
            self._entries.move_to_end(tile_hash)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
