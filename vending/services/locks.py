"""
Per-key locks for read-modify-write on accounts and products.

Keys are always acquired in sorted order (same rule as sorting user ids
before locking rows) so two callers locking the same pair cannot deadlock.
Waits are bounded; running out of time raises Conflict.
"""

import threading
import time
from contextlib import contextmanager
from flask import current_app
from vending.extensions import db
from vending.services.errors import Conflict


class KeyLocks:
    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, number of callers holding or waiting on it]
        self._locks = {}

    def _checkout(self, key):
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = [threading.Lock(), 0]
            entry[1] += 1
            return entry[0]

    def _checkin(self, key):
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if not entry[1]:
                del self._locks[key]

    def __len__(self):
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, *keys, timeout):
        deadline = time.monotonic() + timeout
        acquired = []
        try:
            for key in sorted(set(keys)):
                lock = self._checkout(key)
                if not lock.acquire(timeout=max(deadline - time.monotonic(), 0)):
                    self._checkin(key)
                    raise Conflict(f'Timed out waiting for {key}')
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)


key_locks = KeyLocks()


def product_key(product_id):
    return f'product:{product_id}'


def account_key(user_id):
    return f'account:{user_id}'


def lock_timeout():
    return current_app.config['LOCK_TIMEOUT_SECONDS']


def _bound_row_lock_wait():
    # Row locks taken by other worker processes must not be waited on forever.
    # SET LOCAL lasts until the current transaction ends.
    if db.engine.dialect.name == 'postgresql':
        millis = max(int(lock_timeout() * 1000), 1)
        db.session.execute(db.text(f'SET LOCAL lock_timeout = {millis}'))


def fetch_for_update(model, ident):
    """
    Re-read a row, bypassing the session's cached copy.
    SELECT ... FOR UPDATE where the database supports it (ignored by SQLite).
    """
    _bound_row_lock_wait()
    return db.session.get(model, ident, with_for_update=True, populate_existing=True)
