"""PostgreSQL implementation of the instance store."""

from __future__ import annotations

import json

import asyncpg

from ..contracts import WorkflowInstance
from ..errors import InstanceNotFound, StoreUnavailable, VersionConflict
from .repository import InstanceStore


class PostgresInstanceStore(InstanceStore):
    """Persist workflow instances using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        try:
            conn = await asyncpg.connect(self._dsn)
        except (OSError, asyncpg.PostgresError) as exc:
            raise StoreUnavailable(f"Cannot connect to PostgreSQL: {exc}") from exc
        if not self._initialized:
            try:
                await self._ensure_schema(conn)
            except (OSError, asyncpg.PostgresError) as exc:
                await conn.close()
                raise StoreUnavailable(f"Cannot prepare PostgreSQL schema: {exc}") from exc
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_instances (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                document_id TEXT NOT NULL,
                status TEXT NOT NULL,
                version INTEGER NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                data JSONB NOT NULL
            )
            """
        )

    # ------------------------------------------------------------------
    async def create(self, instance: WorkflowInstance) -> WorkflowInstance:
        stored = instance.model_copy(deep=True, update={"version": 1})
        conn = await self._connect()
        try:
            await conn.execute(
                "INSERT INTO workflow_instances (id, workflow_id, document_id, status, version, updated_at, data) VALUES ($1, $2, $3, $4, $5, $6, $7)",
                stored.id,
                stored.workflow_id,
                stored.document_id,
                stored.status.value,
                stored.version,
                stored.updated_at,
                stored.to_json(),
            )
        except asyncpg.UniqueViolationError:
            raise VersionConflict(stored.id, 0, None) from None
        except asyncpg.PostgresError as exc:
            raise StoreUnavailable(f"PostgreSQL write failed: {exc}") from exc
        finally:
            await conn.close()
        return stored

    async def get(self, instance_id: str) -> WorkflowInstance | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT data, version FROM workflow_instances WHERE id = $1",
                instance_id,
            )
        except asyncpg.PostgresError as exc:
            raise StoreUnavailable(f"PostgreSQL read failed: {exc}") from exc
        finally:
            await conn.close()
        if not row:
            return None
        return self._row_to_instance(row)

    async def put(
        self, instance_id: str, instance: WorkflowInstance, expected_version: int
    ) -> WorkflowInstance:
        stored = instance.model_copy(deep=True, update={"version": expected_version + 1})
        conn = await self._connect()
        try:
            updated = await conn.fetchval(
                """
                UPDATE workflow_instances
                SET status = $1, version = $2, updated_at = $3, data = $4
                WHERE id = $5 AND version = $6
                RETURNING id
                """,
                stored.status.value,
                stored.version,
                stored.updated_at,
                stored.to_json(),
                instance_id,
                expected_version,
            )
            if updated is None:
                actual = await conn.fetchval(
                    "SELECT version FROM workflow_instances WHERE id = $1", instance_id
                )
                if actual is None:
                    raise InstanceNotFound(instance_id)
                raise VersionConflict(instance_id, expected_version, actual)
        except asyncpg.PostgresError as exc:
            raise StoreUnavailable(f"PostgreSQL write failed: {exc}") from exc
        finally:
            await conn.close()
        return stored

    async def list_instances(self) -> list[WorkflowInstance]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT data, version FROM workflow_instances ORDER BY updated_at"
            )
        except asyncpg.PostgresError as exc:
            raise StoreUnavailable(f"PostgreSQL read failed: {exc}") from exc
        finally:
            await conn.close()
        return [self._row_to_instance(r) for r in rows]

    @staticmethod
    def _row_to_instance(row: asyncpg.Record) -> WorkflowInstance:
        data = row["data"]
        if isinstance(data, str):
            data = json.loads(data)
        instance = WorkflowInstance.model_validate(data)
        instance.version = row["version"]
        return instance
