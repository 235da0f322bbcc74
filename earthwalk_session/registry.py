"""
Territory Registry - thread-safe snapshot of the active territory list.

The collision engine reads territories while a claim is in progress, and the
list can be refreshed from the store at the same time. The registry keeps an
immutable tuple and swaps it atomically, so every collision check works on
one consistent snapshot.

Thread Safety:
- refresh()/replace(): Write operations (acquire lock for the swap only)
- snapshot(): Single reference read, no lock needed
- Territory objects are immutable (frozen dataclass)
"""

import time
from typing import Callable, Iterable, Optional, Tuple
import threading

from earthwalk_events.logging import LogEvent, StructuredLogger, create_logger
from earthwalk_geo import Territory

from .collaborators import CollaboratorError, TerritoryStore


class TerritoryRegistry:
    """
    Holds the most recently loaded territories.

    refresh() retries the (idempotent) load with linear backoff and keeps the
    previous snapshot when every attempt fails, so a flaky store never blocks
    the user from tracking.

    Usage:
        registry = TerritoryRegistry(store, retries=2, backoff_s=0.5)
        registry.refresh()
        result = CollisionEngine.classify(path, registry.snapshot(), owner_id)
    """

    def __init__(
        self,
        store: TerritoryStore,
        retries: int = 2,
        backoff_s: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[StructuredLogger] = None,
    ):
        self.store = store
        self.retries = retries
        self.backoff_s = backoff_s
        self._sleep = sleep
        self.logger = logger or create_logger("registry")
        self._snapshot: Tuple[Territory, ...] = ()
        self._lock = threading.Lock()
        self._generation = 0
        self.last_error: Optional[Exception] = None

    def snapshot(self) -> Tuple[Territory, ...]:
        """Current territories (immutable; safe to hold across refreshes)."""
        return self._snapshot

    @property
    def generation(self) -> int:
        """Incremented on every successful replace."""
        return self._generation

    def replace(self, territories: Iterable[Territory]) -> None:
        new_snapshot = tuple(territories)
        with self._lock:
            self._snapshot = new_snapshot
            self._generation += 1

    def refresh(self) -> bool:
        """
        Reload from the store.

        Returns:
            True if the snapshot was replaced, False if every attempt failed
        """
        attempts = self.retries + 1
        for attempt in range(1, attempts + 1):
            try:
                territories = self.store.load_active_territories()
            except (CollaboratorError, OSError) as e:
                self.last_error = e
                if attempt < attempts:
                    delay = self.backoff_s * attempt
                    self.logger.warning(
                        event=LogEvent.STORE_RETRY,
                        message=f"Territory load failed, retrying in {delay:.1f}s",
                        metadata={'attempt': attempt, 'max_attempts': attempts, 'error': str(e)},
                    )
                    self._sleep(delay)
                    continue
                self.logger.error(
                    event=LogEvent.COLLABORATOR_ERROR,
                    message="Territory load failed, keeping previous snapshot",
                    exc_info=e,
                    metadata={'attempts': attempts, 'kept': len(self._snapshot)},
                )
                return False

            self.replace(territories)
            self.last_error = None
            self.logger.info(
                event=LogEvent.TERRITORIES_LOADED,
                message=f"Loaded {len(self._snapshot)} territories",
                metadata={'count': len(self._snapshot), 'attempt': attempt},
            )
            return True
        return False

    def __len__(self) -> int:
        return len(self._snapshot)

    def __repr__(self) -> str:
        return f"TerritoryRegistry(territories={len(self._snapshot)}, generation={self._generation})"
