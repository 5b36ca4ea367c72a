"""SQLite implementation of the instance store."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Any

from ..contracts import WorkflowInstance
from ..errors import InstanceNotFound, StoreUnavailable, VersionConflict
from .repository import InstanceStore


class SQLiteInstanceStore(InstanceStore):
    """Persist workflow instances using SQLite.

    Each instance is stored as one JSON document next to the columns needed
    for the compare-and-set update.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        try:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._ensure_schema()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot open SQLite store {self.db_path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_instances (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                document_id TEXT NOT NULL,
                status TEXT NOT NULL,
                version INTEGER NOT NULL,
                updated_at TEXT NOT NULL,
                data TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock:
            try:
                cur = self._conn.cursor()
                cur.execute(query, params)
                self._conn.commit()
                return cur.rowcount
            except sqlite3.IntegrityError:
                self._conn.rollback()
                raise
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise StoreUnavailable(f"SQLite write failed: {exc}") from exc

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            try:
                cur = self._conn.cursor()
                cur.execute(query, params)
                return cur.fetchone()
            except sqlite3.Error as exc:
                raise StoreUnavailable(f"SQLite read failed: {exc}") from exc

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            try:
                cur = self._conn.cursor()
                cur.execute(query, params)
                return cur.fetchall()
            except sqlite3.Error as exc:
                raise StoreUnavailable(f"SQLite read failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Store API
    async def create(self, instance: WorkflowInstance) -> WorkflowInstance:
        stored = instance.model_copy(deep=True, update={"version": 1})
        try:
            await asyncio.to_thread(
                self._execute,
                "INSERT INTO workflow_instances (id, workflow_id, document_id, status, version, updated_at, data) VALUES (?, ?, ?, ?, ?, ?, ?)",
                stored.id,
                stored.workflow_id,
                stored.document_id,
                stored.status.value,
                stored.version,
                stored.updated_at.isoformat(),
                stored.to_json(),
            )
        except sqlite3.IntegrityError:
            raise VersionConflict(stored.id, 0, None) from None
        return stored

    async def get(self, instance_id: str) -> WorkflowInstance | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT data, version FROM workflow_instances WHERE id = ?",
            instance_id,
        )
        if not row:
            return None
        return self._row_to_instance(row)

    async def put(
        self, instance_id: str, instance: WorkflowInstance, expected_version: int
    ) -> WorkflowInstance:
        stored = instance.model_copy(deep=True, update={"version": expected_version + 1})
        updated = await asyncio.to_thread(
            self._execute,
            """
            UPDATE workflow_instances
            SET status = ?, version = ?, updated_at = ?, data = ?
            WHERE id = ? AND version = ?
            """,
            stored.status.value,
            stored.version,
            stored.updated_at.isoformat(),
            stored.to_json(),
            instance_id,
            expected_version,
        )
        if updated == 0:
            row = await asyncio.to_thread(
                self._fetchone,
                "SELECT version FROM workflow_instances WHERE id = ?",
                instance_id,
            )
            if row is None:
                raise InstanceNotFound(instance_id)
            raise VersionConflict(instance_id, expected_version, row["version"])
        return stored

    async def list_instances(self) -> list[WorkflowInstance]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT data, version FROM workflow_instances ORDER BY updated_at",
        )
        return [self._row_to_instance(row) for row in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @staticmethod
    def _row_to_instance(row: sqlite3.Row) -> WorkflowInstance:
        instance = WorkflowInstance.from_json(row["data"])
        instance.version = row["version"]
        return instance
