"""Tag-based connection pool with failover.

Connections are registered under tags ("main", "master", "replica", ...). Each call to
``get_connection(tag)`` returns a live connection for the tag:

1. The connection cached for the tag by an earlier call is re-probed and returned when
   it is still alive.
2. Otherwise the cache entry is dropped and the tag's remaining candidates are tried in
   insertion order (SEQUENTIAL) or shuffled order (RANDOM). Every tried candidate is
   removed from the pool; the first one that probes alive is cached and returned.

A candidate that fails its probe is never retried by the same pool unless it is added
again.

Example:
    pool = ConnectionPool(SelectionMode.SEQUENTIAL)
    pool.add_connection(primary, "master")
    pool.add_connection(standby, "master")
    connection = pool.get_connection("master")
"""

from __future__ import annotations

import logging
import random
import threading
from enum import Enum

from .connection import Connection
from .exceptions import NoConfiguredConnectionsError, NoLiveConnectionError

logger = logging.getLogger(__name__)

DEFAULT_TAG = "main"


class SelectionMode(str, Enum):
    """Order in which a tag's candidates are tried."""

    RANDOM = "random"
    SEQUENTIAL = "sequential"


class ConnectionPool:
    """Named groups of interchangeable connections.

    Thread Safety:
        One lock per tag is held across the check-cache, probe and promote sequence,
        so two callers never cache different connections for the same tag.
    """

    def __init__(self, selection: SelectionMode | str = SelectionMode.RANDOM):
        self.selection = SelectionMode(selection)
        self._candidates: dict[str, list[Connection]] = {}
        self._cached: dict[str, Connection] = {}
        self._tag_locks: dict[str, threading.Lock] = {}
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"ConnectionPool(selection={self.selection.value!r}, tags={self.tags()})"

    def add_connection(self, connection: Connection, tag: str = DEFAULT_TAG) -> None:
        """Register ``connection`` as a candidate for ``tag`` (no liveness check)."""
        with self._lock:
            self._candidates.setdefault(tag, []).append(connection)
        logger.debug(f"Added {connection!r} to tag '{tag}'")

    def tags(self) -> list[str]:
        """Tags with a cached connection or at least one remaining candidate."""
        with self._lock:
            return sorted(set(self._candidates) | set(self._cached))

    def candidate_count(self, tag: str = DEFAULT_TAG) -> int:
        """Number of untried candidates left for ``tag``."""
        with self._lock:
            return len(self._candidates.get(tag, ()))

    def get_connection(self, tag: str = DEFAULT_TAG) -> Connection:
        """Return a live connection for ``tag``.

        Raises:
            NoConfiguredConnectionsError: If the cache is empty or dead and the tag has
                no candidates left (CZ097)
            NoLiveConnectionError: If no remaining candidate probes alive (CZ098)
        """
        with self._tag_lock(tag):
            cached = self._cached.get(tag)
            if cached is not None:
                if _probe(cached):
                    return cached
                logger.warning(f"Cached connection for tag '{tag}' is no longer alive")
                del self._cached[tag]

            with self._lock:
                candidates = self._candidates.get(tag, [])
                if not candidates:
                    raise NoConfiguredConnectionsError(tag)
                if self.selection is SelectionMode.RANDOM:
                    random.shuffle(candidates)

            tried = 0
            while True:
                with self._lock:
                    if not candidates:
                        break
                    candidate = candidates.pop(0)
                tried += 1
                if _probe(candidate):
                    self._cached[tag] = candidate
                    logger.debug(f"Selected {candidate!r} for tag '{tag}'")
                    return candidate
                logger.warning(f"Candidate {candidate!r} for tag '{tag}' failed its probe")

            raise NoLiveConnectionError(tag, tried)

    def _tag_lock(self, tag: str) -> threading.Lock:
        with self._lock:
            return self._tag_locks.setdefault(tag, threading.Lock())


def _probe(connection: Connection) -> bool:
    """Liveness check that treats any exception as "not alive"."""
    try:
        return bool(connection.is_alive())
    except Exception as e:  # noqa: BLE001 - probe failure means "not alive"
        logger.debug(f"Probe of {connection!r} raised: {e}")
        return False


__all__ = ["DEFAULT_TAG", "ConnectionPool", "SelectionMode"]
