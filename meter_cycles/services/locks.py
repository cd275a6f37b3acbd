"""Per-cycle serialization of gated mutations.

Every "read progress -> decide -> write status" sequence runs while holding the
cycle's in-process lock and a row lock on the cycle (SELECT ... FOR UPDATE on
databases that support it), so two completions or exports cannot both pass
the gate before either writes.
"""

import logging
import threading
from contextlib import contextmanager
from typing import ContextManager, Hashable, Iterator

from sqlalchemy.orm import Session

from meter_cycles.models.reading_cycle import ReadingCycle
from meter_cycles.services.errors import NotFoundError

logger = logging.getLogger(__name__)


class CycleLockRegistry:
    """One re-entrant lock per cycle id, created on first use.

    Cycle naming is serialized per service through the same registry, under a
    separate key, so two creates cannot both see a name as free.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[Hashable, threading.RLock] = {}

    def lock_for(self, key: Hashable) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lock = self.lock_for(key)
        with lock:
            yield

    def hold_names(self, service_id: str) -> ContextManager[None]:
        """Serialize the name check and write of cycles of one service."""
        return self.hold(("cycle-names", service_id))


# Process-wide registry shared by all services
cycle_locks = CycleLockRegistry()


@contextmanager
def locked_cycle(
    db: Session,
    cycle_id: int,
    registry: CycleLockRegistry | None = None,
) -> Iterator[ReadingCycle]:
    """Load a cycle under its lock for the duration of a gated mutation.

    The session is rolled back if the block raises, so a rejected mutation
    leaves nothing behind.

    Raises:
        NotFoundError: If the cycle does not exist or was deleted
    """
    registry = registry or cycle_locks
    with registry.hold(cycle_id):
        cycle = (
            db.query(ReadingCycle)
            .filter(ReadingCycle.id == cycle_id, ReadingCycle.deleted_at.is_(None))
            .populate_existing()
            .with_for_update()
            .first()
        )
        if cycle is None:
            raise NotFoundError("Cycle", cycle_id)
        try:
            yield cycle
        except Exception:
            db.rollback()
            raise


__all__ = ["CycleLockRegistry", "cycle_locks", "locked_cycle"]
