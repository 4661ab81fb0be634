"""
Room directory: the shared record store every client coordinates through.

Records are plain JSON-able dicts keyed by room code. All state changes go
through ``transact``, which retries on conflicting commits, so the lobby
invariants hold without any in-process locking by callers.

Two stores ship here:

- ``InMemoryRoomDirectory``: version counter + compare-and-swap, used by the
  tests and for single-process runs.
- ``SqlRoomDirectory``: one row per room with SQLAlchemy's optimistic
  ``version_id_col``; this is what the Flask service runs on.
"""
import copy
import json
import logging
import queue
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from errors import DirectoryUnavailable, LobbyError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 25


class _Marker:
    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return self.name


# Return values a transaction function may give instead of a new record
DELETE = _Marker('DELETE')
NO_CHANGE = _Marker('NO_CHANGE')

_CLOSED = _Marker('CLOSED')


@dataclass(frozen=True)
class RoomSnapshot:
    code: str
    version: int
    record: Optional[dict]

    @property
    def exists(self) -> bool:
        return self.record is not None


class RoomFeed:
    """
    Cancellable stream of snapshots for one room.

    The first snapshot is the value at subscription time, then one per
    committed change in commit order. Once ``cancel`` returns, ``get`` and
    iteration yield nothing more.
    """

    def __init__(self, code: str, on_cancel: Optional[Callable[['RoomFeed'], None]] = None) -> None:
        self.code = code
        self._queue: 'queue.Queue' = queue.Queue()
        self._cancelled = threading.Event()
        self._on_cancel = on_cancel

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def push(self, snapshot: RoomSnapshot) -> None:
        if not self.cancelled:
            self._queue.put(snapshot)

    def push_error(self, error: LobbyError) -> None:
        if not self.cancelled:
            self._queue.put(error)

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout``; True if cancelled meanwhile."""
        return self._cancelled.wait(timeout)

    def get(self, timeout: Optional[float] = None) -> Optional[RoomSnapshot]:
        if self.cancelled:
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if self.cancelled or item is _CLOSED:
            return None
        if isinstance(item, LobbyError):
            raise item
        return item

    def __iter__(self):
        while True:
            item = self.get()
            if item is None:
                return
            yield item

    def cancel(self) -> None:
        if self.cancelled:
            return
        self._cancelled.set()
        self._queue.put(_CLOSED)
        if self._on_cancel:
            self._on_cancel(self)


class RoomDirectory:
    """Contract the lobby relies on. Subclasses implement the storage."""

    def snapshot(self, code: str) -> RoomSnapshot:
        raise NotImplementedError

    def get(self, code: str) -> Optional[dict]:
        return self.snapshot(code).record

    def create(self, code: str, record: dict) -> None:
        """Unconditional write of a fresh record."""
        self.transact(code, lambda _current: record)

    def transact(self, code: str, fn: Callable[[Optional[dict]], object]) -> Optional[dict]:
        """
        Atomically apply ``fn`` to the current record (None when absent).

        ``fn`` returns the new record, ``DELETE`` or ``NO_CHANGE``; raising
        aborts without writing. When another commit lands between the read
        and the write, the whole call is retried with a fresh read.
        Returns the record as it stands after the call, None if absent.
        """
        raise NotImplementedError

    def feed(self, code: str) -> RoomFeed:
        raise NotImplementedError

    def subscribe(self, code: str, on_change: Callable[[Optional[dict]], None],
                  on_error: Optional[Callable[[LobbyError], None]] = None) -> Callable[[], None]:
        """
        Callback flavour of ``feed``. Returns ``unsubscribe``; after it
        returns no callback runs again. An error ends the subscription.
        """
        feed = self.feed(code)
        lock = threading.RLock()
        done = threading.Event()

        def report(error: LobbyError) -> None:
            with lock:
                if done.is_set():
                    return
                done.set()
                if on_error:
                    on_error(error)
                else:
                    logger.error(f"Feed for room {code} failed: {error}")

        def pump() -> None:
            try:
                for snapshot in feed:
                    with lock:
                        if done.is_set():
                            return
                        on_change(snapshot.record)
            except LobbyError as e:
                report(e)
            except Exception as e:
                logger.exception(f"Feed callback for room {code} raised")
                report(DirectoryUnavailable(f"Feed for room {code} stopped: {e}"))
            finally:
                feed.cancel()

        def unsubscribe() -> None:
            with lock:
                done.set()
            feed.cancel()

        threading.Thread(target=pump, name=f"room-feed-{code}", daemon=True).start()
        return unsubscribe


class InMemoryRoomDirectory(RoomDirectory):
    """
    Process-local directory with optimistic concurrency.

    ``read_hook(code, attempt)`` runs after a transaction has read its
    snapshot and before it calls ``fn``; tests use it to force interleavings.
    ``fail_next(n)`` makes the next n operations raise DirectoryUnavailable.
    """

    def __init__(self, max_retries: int = DEFAULT_MAX_RETRIES,
                 read_hook: Optional[Callable[[str, int], None]] = None) -> None:
        self.max_retries = max_retries
        self.read_hook = read_hook
        self.conflicts = 0
        self._lock = threading.Lock()
        self._records: Dict[str, dict] = {}
        # kept across deletes so a recreated room never reuses a version
        self._versions: Dict[str, int] = {}
        self._feeds: Dict[str, List[RoomFeed]] = {}
        self._failures = 0

    def fail_next(self, count: int = 1) -> None:
        with self._lock:
            self._failures += count

    def _check_available(self) -> None:
        with self._lock:
            if self._failures:
                self._failures -= 1
                raise DirectoryUnavailable('Room directory unreachable')

    def snapshot(self, code: str) -> RoomSnapshot:
        self._check_available()
        with self._lock:
            return RoomSnapshot(code, self._versions.get(code, 0),
                                copy.deepcopy(self._records.get(code)))

    def create(self, code: str, record: dict) -> None:
        self._check_available()
        with self._lock:
            self._commit(code, copy.deepcopy(record))

    def transact(self, code, fn):
        self._check_available()
        for attempt in range(self.max_retries):
            with self._lock:
                version = self._versions.get(code, 0)
                current = copy.deepcopy(self._records.get(code))
            if self.read_hook:
                self.read_hook(code, attempt)

            result = fn(copy.deepcopy(current))
            if result is NO_CHANGE:
                return current

            with self._lock:
                if self._versions.get(code, 0) != version:
                    self.conflicts += 1
                    logger.debug(f"Conflict on room {code} (attempt {attempt + 1}), retrying")
                    continue
                if result is DELETE:
                    if code in self._records:
                        self._commit(code, None)
                    return None
                self._commit(code, copy.deepcopy(result))
                return copy.deepcopy(result)

        raise DirectoryUnavailable(
            f"Room {code} kept changing; gave up after {self.max_retries} attempts"
        )

    def _commit(self, code: str, record: Optional[dict]) -> None:
        # caller holds self._lock
        version = self._versions.get(code, 0) + 1
        self._versions[code] = version
        if record is None:
            self._records.pop(code, None)
        else:
            self._records[code] = record
        for feed in self._feeds.get(code, []):
            feed.push(RoomSnapshot(code, version, copy.deepcopy(record)))

    def feed(self, code: str) -> RoomFeed:
        self._check_available()
        feed = RoomFeed(code, on_cancel=self._drop_feed)
        with self._lock:
            self._feeds.setdefault(code, []).append(feed)
            feed.push(RoomSnapshot(code, self._versions.get(code, 0),
                                   copy.deepcopy(self._records.get(code))))
        return feed

    def _drop_feed(self, feed: RoomFeed) -> None:
        with self._lock:
            feeds = self._feeds.get(feed.code, [])
            if feed in feeds:
                feeds.remove(feed)
            if not feeds:
                self._feeds.pop(feed.code, None)

    def active_feeds(self, code: str) -> int:
        with self._lock:
            return len(self._feeds.get(code, []))


db = SQLAlchemy()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RoomRecord(db.Model):
    """One lobby per row; ``version`` is bumped by SQLAlchemy on every write."""
    __tablename__ = 'rooms'

    code = db.Column(db.String(4), primary_key=True)
    version = db.Column(db.Integer, nullable=False)
    data = db.Column(db.Text, nullable=False)
    updated_at = db.Column(db.DateTime, default=_utc_now, onupdate=_utc_now)

    __mapper_args__ = {'version_id_col': version}


class SqlRoomDirectory(RoomDirectory):
    """
    Directory backed by the ``rooms`` table.

    Writes are ``UPDATE ... WHERE version = :read_version``; a concurrent
    commit makes SQLAlchemy raise StaleDataError and the transaction is run
    again. Feeds poll the row every ``poll_interval`` seconds.
    """

    def __init__(self, app, poll_interval: float = 0.25,
                 max_retries: int = DEFAULT_MAX_RETRIES) -> None:
        self.app = app
        self.poll_interval = poll_interval
        self.max_retries = max_retries

    def snapshot(self, code: str) -> RoomSnapshot:
        with self.app.app_context():
            try:
                row = db.session.get(RoomRecord, code)
                if row is None:
                    return RoomSnapshot(code, 0, None)
                return RoomSnapshot(code, row.version, json.loads(row.data))
            except SQLAlchemyError as e:
                logger.error(f"Reading room {code} failed: {e}")
                raise DirectoryUnavailable(f"Could not read room {code}") from e
            finally:
                db.session.rollback()

    def transact(self, code, fn):
        with self.app.app_context():
            for attempt in range(self.max_retries):
                try:
                    row = db.session.get(RoomRecord, code)
                    current = json.loads(row.data) if row is not None else None

                    result = fn(copy.deepcopy(current))
                    if result is NO_CHANGE:
                        db.session.rollback()
                        return current
                    if result is DELETE:
                        if row is not None:
                            db.session.delete(row)
                            db.session.commit()
                        return None

                    payload = json.dumps(result)
                    if row is None:
                        db.session.add(RoomRecord(code=code, data=payload))
                    else:
                        row.data = payload
                    db.session.commit()
                    return copy.deepcopy(result)
                except (StaleDataError, IntegrityError):
                    db.session.rollback()
                    logger.info(f"Conflict on room {code} (attempt {attempt + 1}), retrying")
                except SQLAlchemyError as e:
                    db.session.rollback()
                    logger.error(f"Transaction on room {code} failed: {e}")
                    raise DirectoryUnavailable(f"Could not update room {code}") from e
                except Exception:
                    db.session.rollback()
                    raise

        raise DirectoryUnavailable(
            f"Room {code} kept changing; gave up after {self.max_retries} attempts"
        )

    def feed(self, code: str) -> RoomFeed:
        feed = RoomFeed(code)
        threading.Thread(target=self._poll, args=(feed,),
                         name=f"room-poll-{code}", daemon=True).start()
        return feed

    def _poll(self, feed: RoomFeed) -> None:
        last = _CLOSED
        while not feed.cancelled:
            try:
                snap = self.snapshot(feed.code)
            except DirectoryUnavailable as e:
                feed.push_error(e)
                return
            key = None if snap.record is None else (snap.version, json.dumps(snap.record, sort_keys=True))
            if key != last:
                feed.push(snap)
                last = key
            if feed.wait(self.poll_interval):
                return
