"""Advisory, per-item locks shared by every worker through the filesystem

A lock is a directory `<lock_dir>/<id>.lock` created with `mkdir`, which either creates the
directory or fails if it already exists, on local and network filesystems alike. The lock
directory holds an `owner.json` record of who acquired it and when.

Workers killed mid-clip never release their locks. A lock older than `stale_after` seconds
is stale: depending on policy it is reclaimed or reported with `StaleLockError`. Reclaiming
is serialized by a second `mkdir` guard, `<id>.lock.reclaim`, so only one worker can break
a given stale lock.
"""
import json
import logging
import os
import shutil
import socket
import time
import uuid
from contextlib import suppress
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from huc_tools.errors import LockContention, StaleLockError
from huc_tools.util import atomic_write_text, owner_id

log = logging.getLogger(__name__)

LOCK_SUFFIX = '.lock'
RECLAIM_SUFFIX = '.reclaim'
RECORD_NAME = 'owner.json'


@dataclass(frozen=True)
class LockRecord:
    owner: str
    host: str
    pid: int
    acquired_at: float
    token: str


class ItemLock:
    """A held item lock; release it explicitly or use it as a context manager"""
    def __init__(self, manager: 'LockManager', item_id: str, record: LockRecord):
        self.manager = manager
        self.item_id = item_id
        self.record = record
        self.released = False

    def release(self):
        if not self.released:
            self.manager.release(self)
            self.released = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()


class LockManager:
    def __init__(self, lock_dir: Union[str, Path], stale_after: float, reclaim_stale: bool = True,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            lock_dir: Directory holding the item locks
            stale_after: Seconds after which a held lock is considered abandoned
            reclaim_stale: Reclaim stale locks instead of raising `StaleLockError`
            clock: Source of the current time, in seconds since the epoch
        """
        self.lock_dir = Path(lock_dir)
        self.stale_after = stale_after
        self.reclaim_stale = reclaim_stale
        self.clock = clock

    def lock_path(self, item_id: str) -> Path:
        return self.lock_dir / f'{item_id}{LOCK_SUFFIX}'

    def acquire(self, item_id: str) -> ItemLock:
        """Acquire an item's lock without blocking

        Raises:
            LockContention: if another worker holds the lock
            StaleLockError: if the lock is stale and reclaiming is disabled
        """
        path = self.lock_path(item_id)
        try:
            path.mkdir()
        except FileExistsError:
            return self._acquire_held(item_id, path)
        return self._claim(item_id, path)

    def release(self, lock: ItemLock):
        path = self.lock_path(lock.item_id)
        current = self.read_record(path)
        if current is None or current.token != lock.record.token:
            log.warning(f'Lock on {lock.item_id} is no longer held by {lock.record.owner}; leaving it in place')
            return
        with suppress(FileNotFoundError):
            shutil.rmtree(path)

    def read_record(self, path: Path) -> Optional[LockRecord]:
        try:
            return LockRecord(**json.loads((path / RECORD_NAME).read_text()))
        except FileNotFoundError:
            return None
        except (ValueError, TypeError) as e:
            log.warning(f'Unreadable lock record in {path}: {e}')
            return None

    def age(self, path: Path, record: Optional[LockRecord] = None) -> Optional[float]:
        """Seconds since a lock was acquired, or None if it no longer exists

        A lock without a readable record is aged by its directory's modification time.
        """
        if record is not None:
            return self.clock() - record.acquired_at
        try:
            return self.clock() - path.stat().st_mtime
        except FileNotFoundError:
            return None

    def is_stale(self, item_id: str) -> bool:
        path = self.lock_path(item_id)
        age = self.age(path, self.read_record(path))
        return age is not None and age > self.stale_after

    def _claim(self, item_id: str, path: Path) -> ItemLock:
        record = LockRecord(
            owner=owner_id(),
            host=socket.gethostname(),
            pid=os.getpid(),
            acquired_at=self.clock(),
            token=uuid.uuid4().hex,
        )
        try:
            atomic_write_text(path / RECORD_NAME, json.dumps(asdict(record)))
        except OSError:
            shutil.rmtree(path, ignore_errors=True)
            raise
        return ItemLock(self, item_id, record)

    def _acquire_held(self, item_id: str, path: Path) -> ItemLock:
        record = self.read_record(path)
        age = self.age(path, record)
        owner = record.owner if record else 'an unknown owner'

        if age is None or age <= self.stale_after:
            raise LockContention(f'{item_id} is locked by {owner}')

        if not self.reclaim_stale:
            raise StaleLockError(f'{item_id} has been locked by {owner} for {age:.0f}s')

        return self._reclaim(item_id, path, record, age)

    def _reclaim(self, item_id: str, path: Path, stale_record: Optional[LockRecord], age: float) -> ItemLock:
        guard = path.with_name(path.name + RECLAIM_SUFFIX)
        try:
            guard.mkdir()
        except FileExistsError:
            guard_age = self.age(guard)
            if guard_age is not None and guard_age > self.stale_after:
                log.warning(f'Removing abandoned reclaim guard {guard}')
                with suppress(FileNotFoundError):
                    guard.rmdir()
            raise LockContention(f'{item_id} stale lock is being reclaimed by another worker')

        try:
            current = self.read_record(path)
            current_age = self.age(path, current)
            if current != stale_record or current_age is None or current_age <= self.stale_after:
                raise LockContention(f'{item_id} was re-locked while reclaiming')

            owner = stale_record.owner if stale_record else 'an unknown owner'
            log.warning(f'Reclaiming stale lock on {item_id} held by {owner} for {age:.0f}s')
            shutil.rmtree(path)
            try:
                path.mkdir()
            except FileExistsError:
                raise LockContention(f'{item_id} was re-locked while reclaiming')
            return self._claim(item_id, path)
        finally:
            guard.rmdir()
