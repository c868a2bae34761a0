"""PostgreSQL operation record store."""

from __future__ import annotations

import asyncio
import json

import asyncpg  # type: ignore[import-untyped]

from embedded_host_runtime.domain.errors import StorageUnavailableError
from embedded_host_runtime.domain.operations import OperationRecord
from embedded_host_runtime.domain.ports import OperationRecordStore
from embedded_host_runtime.infrastructure.storage.record_codec import (
    decode_record,
    encode_record,
)

_DRIVER_ERRORS = (OSError, asyncpg.PostgresError, asyncpg.InterfaceError)


class PostgresOperationRecordStore(OperationRecordStore):
    """Operation record slots backed by PostgreSQL."""

    def __init__(
        self,
        dsn: str,
        min_pool_size: int = 1,
        max_pool_size: int = 4,
    ) -> None:
        self._dsn = dsn
        self._min_pool_size = min_pool_size
        self._max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None
        self._pool_lock = asyncio.Lock()

    async def get_record(self, kind: str) -> OperationRecord | None:
        """Return by kind."""

        try:
            pool = await self._get_pool()
            row = await pool.fetchrow(
                "SELECT payload FROM operation_records WHERE kind = $1",
                kind,
            )
        except _DRIVER_ERRORS as exc:
            raise StorageUnavailableError(f"Cannot read operation record '{kind}': {exc}") from exc
        if row is None:
            return None
        return decode_record(kind, row["payload"])

    async def list_kinds(self) -> list[str]:
        """Return stored kinds."""

        try:
            pool = await self._get_pool()
            rows = await pool.fetch("SELECT kind FROM operation_records ORDER BY kind ASC")
        except _DRIVER_ERRORS as exc:
            raise StorageUnavailableError(f"Cannot list operation records: {exc}") from exc
        return [str(row["kind"]) for row in rows]

    async def put_record(self, record: OperationRecord) -> bool:
        """Conditional upsert; an older checkpoint never replaces a newer one."""

        try:
            pool = await self._get_pool()
            result = await pool.execute(
                """
                INSERT INTO operation_records (
                    kind,
                    operation_id,
                    payload,
                    last_checkpoint_at,
                    updated_at
                )
                VALUES ($1, $2, $3::jsonb, $4, NOW())
                ON CONFLICT (kind) DO UPDATE
                SET
                    operation_id = EXCLUDED.operation_id,
                    payload = EXCLUDED.payload,
                    last_checkpoint_at = EXCLUDED.last_checkpoint_at,
                    updated_at = NOW()
                WHERE operation_records.last_checkpoint_at <= EXCLUDED.last_checkpoint_at
                """,
                record.kind,
                record.operation_id,
                json.dumps(encode_record(record)),
                record.last_checkpoint_at,
            )
        except _DRIVER_ERRORS as exc:
            raise StorageUnavailableError(
                f"Cannot write operation record '{record.kind}': {exc}"
            ) from exc
        return result.endswith("1")

    async def delete_record(self, kind: str, operation_id: str | None = None) -> None:
        """Delete by kind, guarded by operation id when given."""

        try:
            pool = await self._get_pool()
            if operation_id is None:
                await pool.execute("DELETE FROM operation_records WHERE kind = $1", kind)
            else:
                await pool.execute(
                    "DELETE FROM operation_records WHERE kind = $1 AND operation_id = $2",
                    kind,
                    operation_id,
                )
        except _DRIVER_ERRORS as exc:
            raise StorageUnavailableError(
                f"Cannot delete operation record '{kind}': {exc}"
            ) from exc

    async def clear(self) -> None:
        """Delete every row."""

        try:
            pool = await self._get_pool()
            await pool.execute("DELETE FROM operation_records")
        except _DRIVER_ERRORS as exc:
            raise StorageUnavailableError(f"Cannot clear operation records: {exc}") from exc

    async def close(self) -> None:
        """Close the pool if it was initialized."""

        pool = self._pool
        self._pool = None
        if pool is not None:
            await pool.close()

    async def _get_pool(self) -> asyncpg.Pool:
        if self._pool is not None:
            return self._pool

        async with self._pool_lock:
            if self._pool is None:
                pool = await asyncpg.create_pool(
                    dsn=self._dsn,
                    min_size=self._min_pool_size,
                    max_size=self._max_pool_size,
                )
                await self._ensure_schema(pool)
                self._pool = pool
        assert self._pool is not None
        return self._pool

    async def _ensure_schema(self, pool: asyncpg.Pool) -> None:
        await pool.execute(
            """
            CREATE TABLE IF NOT EXISTS operation_records (
                kind TEXT PRIMARY KEY,
                operation_id TEXT NOT NULL,
                payload JSONB NOT NULL,
                last_checkpoint_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            """
        )


__all__ = ["PostgresOperationRecordStore"]
