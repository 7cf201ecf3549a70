"""Per-module publish exclusivity.

A process-local lock per module id serializes threads of one worker; the
SELECT ... FOR UPDATE on the link row serializes workers sharing the
database. The row lock lives until the caller's transaction ends.
"""
import logging
import threading
from contextlib import contextmanager

from scm_publisher.extensions import db
from scm_publisher.models import ModuleSCMLink

logger = logging.getLogger(__name__)

# module id -> [lock, number of threads holding or waiting for it]
_locks: dict = {}
_registry_lock = threading.Lock()


def _checkout(key: str) -> list:
    with _registry_lock:
        entry = _locks.setdefault(key, [threading.Lock(), 0])
        entry[1] += 1
        return entry


def _checkin(key: str, entry: list):
    with _registry_lock:
        entry[1] -= 1
        if entry[1] == 0:
            del _locks[key]


@contextmanager
def module_lock(module_id, link_id=None):
    """Hold exclusive publish rights for a module."""
    key = str(module_id)
    entry = _checkout(key)
    lock = entry[0]
    try:
        if not lock.acquire(blocking=False):
            logger.info(f"Waiting for publish lock on module {module_id}")
            lock.acquire()
        try:
            if link_id is not None:
                db.session.query(ModuleSCMLink).filter_by(id=link_id).with_for_update().first()
            yield
        finally:
            lock.release()
    finally:
        _checkin(key, entry)
