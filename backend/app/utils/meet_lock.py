"""
Per-meet run lock.

Pairing, mat assignment and sequencing for one meet rewrite that meet's
whole bout table, so only one such run may be in flight per meet. Runs for
different meets proceed in parallel.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_S = 5.0

_registry_lock = threading.Lock()
_meet_locks: Dict[int, threading.Lock] = {}


class MeetLockedError(Exception):
    """Another scheduling run holds this meet"""

    def __init__(self, meet_id: int):
        self.meet_id = meet_id
        super().__init__(f"Meet {meet_id} is being scheduled by another request")


def _lock_for(meet_id: int) -> threading.Lock:
    with _registry_lock:
        lock = _meet_locks.get(meet_id)
        if lock is None:
            lock = threading.Lock()
            _meet_locks[meet_id] = lock
        return lock


@contextmanager
def meet_lock(meet_id: int, timeout: float = DEFAULT_LOCK_TIMEOUT_S):
    """
    Hold the meet's run lock for the body of the with-block.

    Usage:
        with meet_lock(meet.id):
            regenerate_pairings(session, meet.id)

    Raises:
        MeetLockedError: lock not acquired within `timeout` seconds
    """
    lock = _lock_for(meet_id)
    if not lock.acquire(timeout=timeout):
        logger.warning("MEET_LOCK: meet_id=%s busy after %.1fs", meet_id, timeout)
        raise MeetLockedError(meet_id)
    try:
        yield
    finally:
        lock.release()


def is_meet_locked(meet_id: int) -> bool:
    lock = _meet_locks.get(meet_id)
    return lock is not None and lock.locked()
