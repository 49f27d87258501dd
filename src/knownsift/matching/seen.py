from __future__ import annotations

from threading import Lock
from typing import Set


class SeenHashSet:
    """
    Hash keys already classified as known in the current run.

    Shared by everything resolving chunks of one run; ``add_if_absent`` is
    the only mutation and is atomic, so a key crossing chunk boundaries is
    counted as known exactly once.
    """

    def __init__(self) -> None:
        self._lock = Lock()
        self._hashes: Set[str] = set()

    def add_if_absent(self, hash_key: str) -> bool:
        """Register a key; True if it was not registered before."""
        with self._lock:
            if hash_key in self._hashes:
                return False
            self._hashes.add(hash_key)
            return True

    def __contains__(self, hash_key: object) -> bool:
        with self._lock:
            return hash_key in self._hashes

    def __len__(self) -> int:
        with self._lock:
            return len(self._hashes)
