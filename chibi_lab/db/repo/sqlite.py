from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterator, Mapping, TypeVar

from ...errors import ConnectionFailedError, TransactionConflictError
from ..schema import apply_migrations
from .interfaces import (
    ABORT,
    ChangeCallback,
    ErrorCallback,
    RecordStoreProtocol,
    TransactionResult,
    TransactionStep,
)
from .paths import ancestors, assemble, canonical, flatten, normalise_path, overlapping, subtree_bounds

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNSET = object()

CONNECTION_FAILED_MESSAGE = "Could not connect to the server. Please check your connection."


def _now_ms() -> int:
    return int(time.time() * 1000)


def _is_busy(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


@dataclass
class SQLiteRecordStore(RecordStoreProtocol):
    """Tree-structured record store kept as JSON leaves in an SQLite table.

    Every process that opens the same file acts as a separate client: writes
    bump a shared revision counter that subscriptions poll, and local writes
    wake this process' subscriptions immediately.
    """

    db_path: Path
    poll_interval: float = 0.5
    max_retries: int = 25
    timeout: float = 5.0
    _wakeups: set[asyncio.Event] = field(init=False, repr=False, default_factory=set)

    def __post_init__(self) -> None:
        self.db_path = Path(self.db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            apply_migrations(conn)
        finally:
            conn.close()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)

    @contextmanager
    def write_transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(func, *args)
        except sqlite3.Error as exc:
            raise ConnectionFailedError(CONNECTION_FAILED_MESSAGE) from exc

    # ------------------------------------------------------------------
    # Blocking primitives
    def _select(self, conn: sqlite3.Connection, path: str) -> list[tuple[str, str]]:
        if not path:
            cursor = conn.execute("SELECT path, value_json FROM nodes ORDER BY path")
        else:
            low, high = subtree_bounds(path)
            cursor = conn.execute(
                "SELECT path, value_json FROM nodes WHERE path=? OR (path>? AND path<?) ORDER BY path",
                (path, low, high),
            )
        return cursor.fetchall()

    def _read_value(self, path: str) -> Any:
        conn = self._connect()
        try:
            return assemble(path, self._select(conn, path))
        finally:
            conn.close()

    def _read_revision(self) -> int:
        conn = self._connect()
        try:
            row = conn.execute("SELECT value FROM revision WHERE id=1").fetchone()
        finally:
            conn.close()
        return int(row[0]) if row else 0

    def _replace(self, conn: sqlite3.Connection, path: str, value: Any, now_ms: int) -> None:
        parents = ancestors(path)
        if parents:
            conn.executemany("DELETE FROM nodes WHERE path=?", [(parent,) for parent in parents])
        if path:
            low, high = subtree_bounds(path)
            conn.execute("DELETE FROM nodes WHERE path=? OR (path>? AND path<?)", (path, low, high))
        else:
            conn.execute("DELETE FROM nodes")
        rows = flatten(path, value, now_ms)
        if rows:
            now_s = now_ms // 1000
            conn.executemany(
                "INSERT INTO nodes(path, value_json, updated_at) VALUES(?,?,?)",
                [(row_path, raw, now_s) for row_path, raw in rows],
            )

    def _bump_revision(self, conn: sqlite3.Connection) -> None:
        conn.execute("UPDATE revision SET value = value + 1 WHERE id=1")

    def _write(self, changes: list[tuple[str, Any]]) -> None:
        now_ms = _now_ms()
        with self.write_transaction() as conn:
            for path, value in changes:
                self._replace(conn, path, value, now_ms)
            self._bump_revision(conn)

    def _apply_step(self, path: str, step: TransactionStep) -> tuple[bool, Any]:
        """Run ``step`` on the committed value while holding the write lock."""

        now_ms = _now_ms()
        with self.write_transaction() as conn:
            current = assemble(path, self._select(conn, path))
            proposed = step(current)
            if proposed is ABORT:
                return False, current
            self._replace(conn, path, proposed, now_ms)
            self._bump_revision(conn)
            return True, assemble(path, self._select(conn, path))

    # ------------------------------------------------------------------
    # Public API
    async def get(self, path: str) -> Any:
        return await self._run(self._read_value, normalise_path(path, allow_root=True))

    async def set(self, path: str, value: Any) -> None:
        await self._run(self._write, [(normalise_path(path), value)])
        self._notify()

    async def update(self, changes: Mapping[str, Any]) -> None:
        normalised = [(normalise_path(path), value) for path, value in changes.items()]
        if not normalised:
            return
        clash = overlapping([path for path, _ in normalised])
        if clash is not None:
            raise ValueError(f"update paths overlap: {clash[0]!r} and {clash[1]!r}")
        await self._run(self._write, normalised)
        self._notify()

    async def transaction(self, path: str, step: TransactionStep) -> TransactionResult:
        path = normalise_path(path)
        for attempt in range(1, self.max_retries + 1):
            try:
                committed, value = await asyncio.to_thread(self._apply_step, path, step)
            except sqlite3.OperationalError as exc:
                if not _is_busy(exc):
                    raise ConnectionFailedError(CONNECTION_FAILED_MESSAGE) from exc
                logger.debug("database busy during transaction on %s (attempt %d)", path, attempt)
                await asyncio.sleep(min(0.05 * attempt, 0.5))
                continue
            except sqlite3.Error as exc:
                raise ConnectionFailedError(CONNECTION_FAILED_MESSAGE) from exc
            if committed:
                self._notify()
            return TransactionResult(committed=committed, value=value, attempts=attempt)
        raise TransactionConflictError(
            f"Transaction on {path!r} did not commit after {self.max_retries} attempts."
        )

    def subscribe(
        self,
        path: str,
        on_change: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> "PollingSubscription":
        return PollingSubscription(self, normalise_path(path, allow_root=True), on_change, on_error)

    async def revision(self) -> int:
        return await self._run(self._read_revision)

    # ------------------------------------------------------------------
    # Subscriptions
    def _register(self, event: asyncio.Event) -> None:
        self._wakeups.add(event)

    def _unregister(self, event: asyncio.Event) -> None:
        self._wakeups.discard(event)

    def _notify(self) -> None:
        for event in list(self._wakeups):
            event.set()


class PollingSubscription:
    """Delivers the value at ``path`` whenever it changes.

    The first snapshot is delivered as soon as the task runs, even when the
    path is empty (``None``).
    """

    def __init__(
        self,
        store: SQLiteRecordStore,
        path: str,
        on_change: ChangeCallback,
        on_error: ErrorCallback | None,
    ) -> None:
        self._store = store
        self._path = path
        self._on_change = on_change
        self._on_error = on_error
        self._wakeup = asyncio.Event()
        self._closed = False
        store._register(self._wakeup)
        self._task = asyncio.get_running_loop().create_task(self._poll())

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def path(self) -> str:
        return self._path

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._store._unregister(self._wakeup)
        self._task.cancel()

    async def wait_closed(self) -> None:
        try:
            await self._task
        except asyncio.CancelledError:
            pass

    async def _poll(self) -> None:
        last_revision: int | None = None
        last_value: Any = _UNSET
        while not self._closed:
            self._wakeup.clear()
            try:
                revision = await self._store.revision()
                if revision != last_revision:
                    value = await self._store.get(self._path)
                    last_revision = revision
                    if last_value is _UNSET or canonical(value) != canonical(last_value):
                        last_value = value
                        self._on_change(value)
            except Exception as exc:
                self._fail(exc)
                return
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self._store.poll_interval)
            except asyncio.TimeoutError:
                pass

    def _fail(self, exc: Exception) -> None:
        self._closed = True
        self._store._unregister(self._wakeup)
        if self._on_error is not None:
            self._on_error(exc)
        else:
            logger.error("subscription on %s stopped: %s", self._path, exc)


__all__ = ["PollingSubscription", "SQLiteRecordStore"]
