from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import anyio

from .errors import TransientStoreError


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class MemorySettingsStore:
    def __init__(self) -> None:
        self.rows: dict[tuple[str, str], tuple[Any, str]] = {}

    async def get_tenant_setting(self, tenant_id: str, key: str) -> Any | None:
        row = self.rows.get((tenant_id, key))
        return row[0] if row is not None else None

    async def upsert_tenant_setting(self, tenant_id: str, key: str, value: Any) -> None:
        self.rows[(tenant_id, key)] = (value, _utc_now())


def _init_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS tenant_settings (
            tenant_id TEXT NOT NULL,
            key TEXT NOT NULL,
            value_json TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (tenant_id, key)
        )
        """
    )


class SqliteSettingsStore:
    """Tenant settings in a local SQLite file.

    Each call opens its own connection on a worker thread; any sqlite error
    surfaces as TransientStoreError.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._ready = False

    def _connect(self) -> sqlite3.Connection:
        if not self._ready:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self._path)
        if not self._ready:
            _init_schema(conn)
            conn.commit()
            self._ready = True
        return conn

    def _get(self, tenant_id: str, key: str) -> Any | None:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT value_json FROM tenant_settings WHERE tenant_id = ? AND key = ?",
                (tenant_id, key),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        return json.loads(row[0])

    def _upsert(self, tenant_id: str, key: str, value: Any) -> None:
        conn = self._connect()
        try:
            conn.execute(
                """
                INSERT INTO tenant_settings (tenant_id, key, value_json, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (tenant_id, key)
                DO UPDATE SET value_json = excluded.value_json,
                              updated_at = excluded.updated_at
                """,
                (tenant_id, key, json.dumps(value), _utc_now()),
            )
            conn.commit()
        finally:
            conn.close()

    def _rows(self, tenant_id: str) -> dict[str, Any]:
        conn = self._connect()
        try:
            cur = conn.execute(
                "SELECT key, value_json FROM tenant_settings WHERE tenant_id = ? ORDER BY key",
                (tenant_id,),
            )
            return {key: json.loads(value) for key, value in cur.fetchall()}
        finally:
            conn.close()

    def rows(self, tenant_id: str) -> dict[str, Any]:
        try:
            return self._rows(tenant_id)
        except (sqlite3.Error, OSError, ValueError) as exc:
            raise TransientStoreError("rows", str(exc)) from exc

    async def get_tenant_setting(self, tenant_id: str, key: str) -> Any | None:
        try:
            return await anyio.to_thread.run_sync(self._get, tenant_id, key)
        except (sqlite3.Error, OSError, ValueError) as exc:
            raise TransientStoreError("get_tenant_setting", str(exc)) from exc

    async def upsert_tenant_setting(self, tenant_id: str, key: str, value: Any) -> None:
        try:
            await anyio.to_thread.run_sync(self._upsert, tenant_id, key, value)
        except (sqlite3.Error, OSError, TypeError) as exc:
            raise TransientStoreError("upsert_tenant_setting", str(exc)) from exc
