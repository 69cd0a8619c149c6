"""SQLite audit store implementation."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import aiosqlite

from ..config import resolve_db_path
from ..models import Run, RunRecord, RunStatus

# Columns a finalization may touch
_UPDATABLE_FIELDS = frozenset(
    {"status", "tools_used", "error", "error_code", "final_message", "latency_ms"}
)

_RUN_COLUMNS = """
    id, run_id, requester_provider, requester_id, channel_id, thread_id,
    prompt, profile_id, tools_used, status, error, error_code,
    final_message, latency_ms, created_at, updated_at
"""


class IAuditStore(Protocol):
    """Best-effort audit log of runs (SQLite)."""

    async def init(self) -> None:
        """Initialize database and create tables."""
        ...

    async def close(self) -> None:
        """Close database connection."""
        ...

    async def create_run(self, run: Run) -> int:
        """Write the initial record with status running; return its id."""
        ...

    async def update_run(self, record_id: int, **fields: Any) -> None:
        """Finalize a record."""
        ...


class AuditStore:
    """SQLite audit store implementation."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            self._db_path = resolve_db_path()
        else:
            self._db_path = resolve_db_path(db_path)
        self._conn: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Initialize database and create tables."""
        self._conn = await aiosqlite.connect(self._db_path)

        # Read and execute schema
        schema_path = Path(__file__).parent / "schema.sql"
        with open(schema_path, "r", encoding="utf-8") as f:
            schema_sql = f.read()
        await self._conn.executescript(schema_sql)
        await self._conn.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    async def create_run(self, run: Run) -> int:
        """Write the initial record with status running; return its id."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        cursor = await self._conn.execute(
            """
            INSERT INTO runs
            (run_id, requester_provider, requester_id, channel_id, thread_id,
             prompt, profile_id, tools_used, status)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                run.id,
                run.requester.provider,
                run.requester.id,
                run.context.channel_id,
                run.context.thread_id,
                run.prompt,
                run.profile_id,
                json.dumps(run.tools_used),
                RunStatus.RUNNING.value,
            ),
        )
        await self._conn.commit()
        return cursor.lastrowid

    async def update_run(self, record_id: int, **fields: Any) -> None:
        """Finalize a record.

        Accepts status, tools_used, error, error_code, final_message and
        latency_ms.
        """
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown run fields: {sorted(unknown)}")
        if not fields:
            return

        values: dict[str, Any] = dict(fields)
        if "status" in values:
            values["status"] = RunStatus(values["status"]).value
        if "tools_used" in values:
            values["tools_used"] = json.dumps(list(values["tools_used"]))

        assignments = ", ".join(f"{column} = ?" for column in values)
        await self._conn.execute(
            f"UPDATE runs SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (*values.values(), record_id),
        )
        await self._conn.commit()

    async def get_run(self, run_id: str) -> RunRecord | None:
        """Get the audit record for a run id."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        cursor = await self._conn.execute(
            f"SELECT {_RUN_COLUMNS} FROM runs WHERE run_id = ?",
            (run_id,),
        )
        row = await cursor.fetchone()
        return _row_to_record(row) if row else None

    async def list_runs(
        self,
        status: RunStatus | str | None = None,
        limit: int = 100,
    ) -> list[RunRecord]:
        """Get audit records (newest first), optionally filtered by status."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        if status is not None:
            cursor = await self._conn.execute(
                f"SELECT {_RUN_COLUMNS} FROM runs WHERE status = ? ORDER BY id DESC LIMIT ?",
                (RunStatus(status).value, limit),
            )
        else:
            cursor = await self._conn.execute(
                f"SELECT {_RUN_COLUMNS} FROM runs ORDER BY id DESC LIMIT ?",
                (limit,),
            )
        rows = await cursor.fetchall()
        return [_row_to_record(row) for row in rows]

    async def clear(self) -> None:
        """Clear all data."""
        if not self._conn:
            raise RuntimeError("Storage not initialized")

        await self._conn.execute("DELETE FROM runs")
        await self._conn.commit()


def _parse_timestamp(value: str | None) -> datetime | None:
    # SQLite CURRENT_TIMESTAMP is UTC without an offset
    if not value:
        return None
    return datetime.fromisoformat(value).replace(tzinfo=timezone.utc)


def _row_to_record(row: tuple) -> RunRecord:
    return RunRecord(
        id=row[0],
        run_id=row[1],
        requester_provider=row[2],
        requester_id=row[3],
        channel_id=row[4],
        thread_id=row[5],
        prompt=row[6],
        profile_id=row[7],
        tools_used=json.loads(row[8]) if row[8] else [],
        status=RunStatus(row[9]),
        error=row[10],
        error_code=row[11],
        final_message=row[12],
        latency_ms=row[13],
        created_at=_parse_timestamp(row[14]),
        updated_at=_parse_timestamp(row[15]),
    )
