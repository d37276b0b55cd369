from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Type

from permit_sync.builders import aggregate_builders
from permit_sync.permits.models import (
    PERMIT_FIELDS,
    CanonicalPermit,
    NaturalKey,
    PermitChange,
    SyncRun,
    SyncStatus,
)

logger = logging.getLogger("permit_sync.store")

_PERMIT_COLUMNS: Tuple[str, ...] = PERMIT_FIELDS + (
    "builder_name_normalized",
    "data_hash",
    "raw_json",
    "first_seen_at",
    "last_seen_at",
)
# first_seen_at is written once, on insert.
_PERMIT_UPDATE_COLUMNS = tuple(
    c for c in _PERMIT_COLUMNS if c not in ("permit_num", "revision_num", "first_seen_at")
)

_UPSERT_PERMIT_SQL = (
    f"INSERT INTO permits ({', '.join(_PERMIT_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in _PERMIT_COLUMNS)}) "
    "ON CONFLICT(permit_num, revision_num) DO UPDATE SET "
    + ", ".join(f"{c}=excluded.{c}" for c in _PERMIT_UPDATE_COLUMNS)
)

_SELECT_PERMIT_SQL = (
    f"SELECT {', '.join(PERMIT_FIELDS)} FROM permits "
    "WHERE permit_num = ? AND revision_num = ? LIMIT 1"
)

_SYNC_RUN_COLUMNS = (
    "started_at",
    "completed_at",
    "status",
    "records_total",
    "records_new",
    "records_updated",
    "records_unchanged",
    "records_errors",
    "error_message",
    "snapshot_path",
    "duration_ms",
)


def _to_db(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class RecordStore(ABC):
    """Persistence collaborator consumed by the sync orchestrator.

    Mutations made inside atomic() commit together or not at all; the
    orchestrator opens one such block per record.
    """

    # Exception types meaning the store itself is unusable (connection
    # lost, database locked). These abort a run instead of counting as a
    # per-record error.
    fatal_errors: Tuple[Type[BaseException], ...] = ()

    @abstractmethod
    def get_stored_hash(self, key: NaturalKey) -> Optional[str]:
        pass

    @abstractmethod
    def get_stored_record(self, key: NaturalKey) -> Optional[CanonicalPermit]:
        pass

    @abstractmethod
    def upsert(
        self,
        permit: CanonicalPermit,
        data_hash: str,
        *,
        seen_at: str,
        builder_name_normalized: Optional[str] = None,
        raw_json: Optional[str] = None,
    ) -> None:
        pass

    @abstractmethod
    def touch_last_seen(self, key: NaturalKey, seen_at: str) -> None:
        pass

    @abstractmethod
    def append_changes(
        self, changes: List[PermitChange], *, sync_run_id: Optional[int], changed_at: str
    ) -> None:
        pass

    @abstractmethod
    def create_sync_run(self, run: SyncRun) -> SyncRun:
        pass

    @abstractmethod
    def update_sync_run(self, run: SyncRun) -> None:
        pass

    @abstractmethod
    @contextmanager
    def atomic(self) -> Iterator["RecordStore"]:
        pass


class SQLitePermitStore(RecordStore):
    fatal_errors = (sqlite3.OperationalError, sqlite3.ProgrammingError, sqlite3.InterfaceError)

    def __init__(self, path: str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.path)
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS permits (
                permit_num TEXT NOT NULL,
                revision_num TEXT NOT NULL,
                permit_type TEXT,
                structure_type TEXT,
                work TEXT,
                street_num TEXT,
                street_name TEXT,
                street_type TEXT,
                street_direction TEXT,
                city TEXT,
                postal TEXT,
                geo_id TEXT,
                building_type TEXT,
                category TEXT,
                application_date TEXT,
                issued_date TEXT,
                completed_date TEXT,
                status TEXT,
                description TEXT,
                est_const_cost REAL,
                builder_name TEXT,
                owner TEXT,
                dwelling_units_created INTEGER NOT NULL DEFAULT 0,
                dwelling_units_lost INTEGER NOT NULL DEFAULT 0,
                ward TEXT,
                council_district TEXT,
                current_use TEXT,
                proposed_use TEXT,
                housing_units INTEGER NOT NULL DEFAULT 0,
                storeys INTEGER NOT NULL DEFAULT 0,
                builder_name_normalized TEXT,
                data_hash TEXT NOT NULL,
                raw_json TEXT,
                first_seen_at TEXT NOT NULL,
                last_seen_at TEXT NOT NULL,
                PRIMARY KEY (permit_num, revision_num)
            )
            """
        )
        self.conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_permits_builder_normalized ON permits(builder_name_normalized)"
        )
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS permit_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                permit_num TEXT NOT NULL,
                revision_num TEXT NOT NULL,
                field_name TEXT NOT NULL,
                old_value TEXT,
                new_value TEXT,
                sync_run_id INTEGER,
                changed_at TEXT NOT NULL
            )
            """
        )
        self.conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_permit_history_key ON permit_history(permit_num, revision_num, id)"
        )
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS sync_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                started_at TEXT NOT NULL,
                completed_at TEXT,
                status TEXT NOT NULL,
                records_total INTEGER NOT NULL DEFAULT 0,
                records_new INTEGER NOT NULL DEFAULT 0,
                records_updated INTEGER NOT NULL DEFAULT 0,
                records_unchanged INTEGER NOT NULL DEFAULT 0,
                records_errors INTEGER NOT NULL DEFAULT 0,
                error_message TEXT,
                snapshot_path TEXT,
                duration_ms INTEGER
            )
            """
        )
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS builders (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                name_normalized TEXT NOT NULL UNIQUE,
                permit_count INTEGER NOT NULL DEFAULT 0,
                is_incorporated INTEGER NOT NULL DEFAULT 0,
                first_seen_at TEXT NOT NULL,
                last_seen_at TEXT NOT NULL
            )
            """
        )
        self.conn.commit()

    @staticmethod
    def _utc_now_iso() -> str:
        return datetime.now(timezone.utc).replace(microsecond=0).isoformat()

    @contextmanager
    def atomic(self) -> Iterator["SQLitePermitStore"]:
        try:
            yield self
        except BaseException:
            self.conn.rollback()
            raise
        else:
            self.conn.commit()

    def get_stored_hash(self, key: NaturalKey) -> Optional[str]:
        row = self.conn.execute(
            "SELECT data_hash FROM permits WHERE permit_num = ? AND revision_num = ? LIMIT 1",
            key,
        ).fetchone()
        return str(row["data_hash"]) if row else None

    def get_stored_record(self, key: NaturalKey) -> Optional[CanonicalPermit]:
        row = self.conn.execute(_SELECT_PERMIT_SQL, key).fetchone()
        if not row:
            return None
        return CanonicalPermit.model_validate(dict(row))

    def upsert(
        self,
        permit: CanonicalPermit,
        data_hash: str,
        *,
        seen_at: str,
        builder_name_normalized: Optional[str] = None,
        raw_json: Optional[str] = None,
    ) -> None:
        values = {name: _to_db(getattr(permit, name)) for name in PERMIT_FIELDS}
        values.update(
            builder_name_normalized=builder_name_normalized,
            data_hash=data_hash,
            raw_json=raw_json,
            first_seen_at=seen_at,
            last_seen_at=seen_at,
        )
        self.conn.execute(_UPSERT_PERMIT_SQL, [values[c] for c in _PERMIT_COLUMNS])

    def touch_last_seen(self, key: NaturalKey, seen_at: str) -> None:
        self.conn.execute(
            "UPDATE permits SET last_seen_at = ? WHERE permit_num = ? AND revision_num = ?",
            (seen_at, key[0], key[1]),
        )

    def append_changes(
        self, changes: List[PermitChange], *, sync_run_id: Optional[int], changed_at: str
    ) -> None:
        if not changes:
            return
        self.conn.executemany(
            """
            INSERT INTO permit_history (
                permit_num,
                revision_num,
                field_name,
                old_value,
                new_value,
                sync_run_id,
                changed_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    c.permit_num,
                    c.revision_num,
                    c.field_name,
                    c.old_value,
                    c.new_value,
                    sync_run_id,
                    changed_at,
                )
                for c in changes
            ],
        )

    def list_changes(self, permit_num: str, revision_num: str) -> List[Dict[str, Any]]:
        rows = self.conn.execute(
            """
            SELECT * FROM permit_history
            WHERE permit_num = ? AND revision_num = ?
            ORDER BY id
            """,
            (permit_num, revision_num),
        ).fetchall()
        return [dict(r) for r in rows]

    @staticmethod
    def _row_to_sync_run(row: sqlite3.Row) -> SyncRun:
        data = dict(row)
        data["status"] = SyncStatus(data["status"])
        return SyncRun(**data)

    def create_sync_run(self, run: SyncRun) -> SyncRun:
        if run.id is not None:
            raise ValueError(f"sync run {run.id} already persisted")
        run.started_at = run.started_at or self._utc_now_iso()
        cur = self.conn.execute(
            f"INSERT INTO sync_runs ({', '.join(_SYNC_RUN_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in _SYNC_RUN_COLUMNS)})",
            [_to_db(getattr(run, c)) for c in _SYNC_RUN_COLUMNS],
        )
        self.conn.commit()
        run.id = int(cur.lastrowid)
        return run

    def update_sync_run(self, run: SyncRun) -> None:
        if run.id is None:
            raise ValueError("sync run has not been created")
        # Finalized rows are immutable.
        cur = self.conn.execute(
            f"UPDATE sync_runs SET {', '.join(f'{c} = ?' for c in _SYNC_RUN_COLUMNS)} "
            "WHERE id = ? AND status IN (?, ?)",
            [_to_db(getattr(run, c)) for c in _SYNC_RUN_COLUMNS]
            + [run.id, str(SyncStatus.PENDING), str(SyncStatus.RUNNING)],
        )
        self.conn.commit()
        if not cur.rowcount:
            raise RuntimeError(f"sync run {run.id} does not exist or is already finalized")

    def get_sync_run(self, run_id: int) -> Optional[SyncRun]:
        row = self.conn.execute("SELECT * FROM sync_runs WHERE id = ? LIMIT 1", (run_id,)).fetchone()
        return self._row_to_sync_run(row) if row else None

    def list_sync_runs(self, limit: int = 20) -> List[SyncRun]:
        lim = max(1, min(int(limit or 20), 500))
        rows = self.conn.execute(
            "SELECT * FROM sync_runs ORDER BY id DESC LIMIT ?", (lim,)
        ).fetchall()
        return [self._row_to_sync_run(r) for r in rows]

    def count_permits(self) -> int:
        row = self.conn.execute("SELECT COUNT(*) AS n FROM permits").fetchone()
        return int(row["n"])

    def rebuild_builders(self, *, now_iso: Optional[str] = None) -> Dict[str, Any]:
        """Refresh the builders table from distinct builder names on permits."""

        now = (now_iso or "").strip() or self._utc_now_iso()
        rows: List[Tuple[str, int]] = [
            (str(r["builder_name"]), int(r["n"]))
            for r in self.conn.execute(
                """
                SELECT builder_name, COUNT(*) AS n
                FROM permits
                WHERE builder_name IS NOT NULL AND TRIM(builder_name) != ''
                GROUP BY builder_name
                """
            ).fetchall()
        ]
        builders = aggregate_builders(rows)
        with self.atomic():
            self.conn.executemany(
                """
                INSERT INTO builders (
                    name,
                    name_normalized,
                    permit_count,
                    is_incorporated,
                    first_seen_at,
                    last_seen_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(name_normalized) DO UPDATE SET
                    name=excluded.name,
                    permit_count=excluded.permit_count,
                    is_incorporated=excluded.is_incorporated,
                    last_seen_at=excluded.last_seen_at
                """,
                [
                    (
                        b["name"],
                        b["name_normalized"],
                        b["permit_count"],
                        1 if b["is_incorporated"] else 0,
                        now,
                        now,
                    )
                    for b in builders
                ],
            )
        logger.info("rebuilt %d builders from %d raw names", len(builders), len(rows))
        return {
            "ok": True,
            "builders": len(builders),
            "raw_names": len(rows),
            "top": [
                {"name": b["name"], "permit_count": b["permit_count"]} for b in builders[:10]
            ],
        }

    def list_builders(self, limit: int = 50) -> List[Dict[str, Any]]:
        lim = max(1, min(int(limit or 50), 5000))
        rows = self.conn.execute(
            "SELECT * FROM builders ORDER BY permit_count DESC, name_normalized LIMIT ?", (lim,)
        ).fetchall()
        out = []
        for r in rows:
            d = dict(r)
            d["is_incorporated"] = bool(d["is_incorporated"])
            out.append(d)
        return out

    def close(self) -> None:
        self.conn.close()
