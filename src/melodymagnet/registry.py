from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from sqlite3 import Connection, Error as SQLiteError, connect
from typing import Iterator
from .errors import SnapshotError, StorageError
from .models import Album, dump_snapshot, load_snapshot
from .utils.logging import setup_logging

logger = setup_logging(__name__)


class SyncState(str, Enum):
    REQUESTED = "Requested"
    PROCESSING = "Processing"
    SYNCHRONIZED = "Synchronized"


@dataclass(slots=True, frozen=True)
class RegistryStats:
    requested: int = 0
    processing: int = 0
    synchronized: int = 0

    @property
    def total(self) -> int:
        return self.requested + self.processing + self.synchronized

    def as_dict(self) -> dict[str, int]:
        return {
            "requested": self.requested,
            "processing": self.processing,
            "synchronized": self.synchronized,
            "total": self.total,
        }

    def __str__(self) -> str:
        return (
            f"requested={self.requested} processing={self.processing} "
            f"synchronized={self.synchronized} total={self.total}"
        )


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SyncRegistry:
    """Durable per-album sync ledger backed by a single SQLite file.

    Rows are never deleted: a Synchronized row is what keeps discovery from
    requesting the same album again. State only moves forward, one row per
    statement.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = str(db_path)
        try:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            # Autocommit; multi-statement work goes through _transaction()
            self.conn: Connection = connect(self.db_path, isolation_level=None)
        except (OSError, SQLiteError) as e:
            raise StorageError(
                f"Cannot open sync registry at {db_path}: {e}",
                details={"path": str(db_path)},
            ) from e
        self._init_tables()

    def __enter__(self) -> "SyncRegistry":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @contextmanager
    def _storage(self, action: str) -> Iterator[None]:
        try:
            yield
        except SQLiteError as e:
            raise StorageError(f"Sync registry failed to {action}: {e}") from e

    @contextmanager
    def _transaction(self) -> Iterator[Connection]:
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            yield self.conn
        except BaseException:
            self.conn.execute("ROLLBACK")
            raise
        else:
            self.conn.execute("COMMIT")

    def _init_tables(self) -> None:
        with self._storage("create tables"):
            self.conn.execute(
                """CREATE TABLE IF NOT EXISTS album_state (
        seq        INTEGER PRIMARY KEY AUTOINCREMENT,
        id         TEXT NOT NULL UNIQUE,
        state      TEXT NOT NULL,
        path       TEXT NOT NULL,
        backend    TEXT NOT NULL,
        details    TEXT NOT NULL,
        cover_url  TEXT NOT NULL DEFAULT '',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
        )"""
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS album_state_by_state ON album_state (state, seq)"
            )

    def request_album(self, album: Album, backend: str) -> bool:
        """Record a newly discovered favorite as Requested.

        Returns False, leaving the existing row untouched, when the album id
        is already in the ledger.
        """
        now = _now()
        with self._storage(f"request album {album.id}"):
            cur = self.conn.execute(
                """INSERT INTO album_state
        (id, state, path, backend, details, cover_url, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO NOTHING""",
                (
                    album.id,
                    SyncState.REQUESTED.value,
                    album.relative_path().as_posix(),
                    backend,
                    dump_snapshot(album),
                    album.cover_url or "",
                    now,
                    now,
                ),
            )
        return cur.rowcount == 1

    def exists(self, album_id: str) -> bool:
        with self._storage(f"look up album {album_id}"):
            cur = self.conn.execute("SELECT 1 FROM album_state WHERE id = ?", (album_id,))
            return cur.fetchone() is not None

    def state_of(self, album_id: str) -> SyncState | None:
        with self._storage(f"read state of album {album_id}"):
            row = self.conn.execute(
                "SELECT state FROM album_state WHERE id = ?", (album_id,)
            ).fetchone()
        return SyncState(row[0]) if row else None

    def _advance(self, album_id: str, target: SyncState, sources: tuple[SyncState, ...]) -> bool:
        placeholders = ", ".join("?" for _ in sources)
        with self._storage(f"mark album {album_id} as {target.value}"):
            cur = self.conn.execute(
                f"UPDATE album_state SET state = ?, updated_at = ? "
                f"WHERE id = ? AND state IN ({placeholders})",
                (target.value, _now(), album_id, *(s.value for s in sources)),
            )
        return cur.rowcount == 1

    def mark_processing(self, album_id: str) -> bool:
        return self._advance(album_id, SyncState.PROCESSING, (SyncState.REQUESTED,))

    def mark_synchronized(self, album_id: str) -> bool:
        return self._advance(
            album_id,
            SyncState.SYNCHRONIZED,
            (SyncState.REQUESTED, SyncState.PROCESSING),
        )

    def claim_next_requested(self) -> Album | None:
        """Move the oldest Requested album to Processing and return its snapshot."""
        with self._storage("claim next requested album"):
            with self._transaction() as conn:
                row = conn.execute(
                    "SELECT id, details FROM album_state WHERE state = ? ORDER BY seq LIMIT 1",
                    (SyncState.REQUESTED.value,),
                ).fetchone()
                if row is None:
                    return None

                album_id, details = row
                try:
                    album = load_snapshot(details)
                except SnapshotError as e:
                    raise StorageError(
                        f"Album {album_id} has an unreadable snapshot: {e}",
                        details={"album_id": album_id},
                    ) from e

                conn.execute(
                    "UPDATE album_state SET state = ?, updated_at = ? WHERE id = ? AND state = ?",
                    (
                        SyncState.PROCESSING.value,
                        _now(),
                        album_id,
                        SyncState.REQUESTED.value,
                    ),
                )
        logger.info(f"Claimed album {album_id} ({album.artist.name} - {album.title})")
        return album

    def processing_ids(self) -> list[str]:
        with self._storage("list processing albums"):
            rows = self.conn.execute(
                "SELECT id FROM album_state WHERE state = ? ORDER BY seq",
                (SyncState.PROCESSING.value,),
            ).fetchall()
        return [r[0] for r in rows]

    def stats(self) -> RegistryStats:
        with self._storage("aggregate statistics"):
            rows = self.conn.execute(
                "SELECT state, count(*) FROM album_state GROUP BY state"
            ).fetchall()
        counts = dict(rows)
        return RegistryStats(
            requested=counts.get(SyncState.REQUESTED.value, 0),
            processing=counts.get(SyncState.PROCESSING.value, 0),
            synchronized=counts.get(SyncState.SYNCHRONIZED.value, 0),
        )

    def close(self) -> None:
        try:
            self.conn.close()
        except SQLiteError as e:
            logger.warning(f"Failed to close sync registry cleanly: {e}")
