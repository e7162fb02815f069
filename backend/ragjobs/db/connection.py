import asyncio
import sqlite3
from typing import Any, Optional


def init_db(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        create table if not exists indexing_jobs (
          job_id text primary key,
          tenant_id text not null,
          project_id text not null,
          credential_ref text not null,
          kind text not null,
          status text not null,
          payload_json text not null,
          progress_json text not null,
          results_json text not null,
          metadata_json text,
          error text,
          created_at text not null,
          updated_at text not null,
          started_at text,
          completed_at text,
          processing_time_ms integer
        );
        """
    )
    conn.execute(
        """
        create table if not exists indexing_job_events (
          event_id integer primary key,
          job_id text not null,
          created_at text not null,
          level text not null,
          message text not null,
          meta_json text
        );
        """
    )
    conn.execute(
        """
        create index if not exists idx_indexing_jobs_owner
        on indexing_jobs (tenant_id, project_id, status);
        """
    )
    conn.execute(
        """
        create index if not exists idx_indexing_jobs_pending
        on indexing_jobs (status, created_at);
        """
    )
    conn.execute(
        """
        create index if not exists idx_indexing_job_events_job
        on indexing_job_events (job_id, event_id);
        """
    )
    conn.commit()


class Database:
    def __init__(self, path: str) -> None:
        self.path = path
        self.lock = asyncio.Lock()
        self.conn: sqlite3.Connection | None = None

    async def connect(self) -> None:
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        init_db(self.conn)

    async def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None

    def _ensure_conn(self) -> sqlite3.Connection:
        if self.conn is None:
            raise RuntimeError("database not initialized")
        return self.conn

    async def execute(self, query: str, params: tuple[Any, ...] = ()) -> int:
        async with self.lock:
            return await asyncio.to_thread(self._execute_sync, query, params)

    def _execute_sync(self, query: str, params: tuple[Any, ...]) -> int:
        conn = self._ensure_conn()
        cur = conn.execute(query, params)
        conn.commit()
        return cur.rowcount

    async def fetchone(
        self, query: str, params: tuple[Any, ...] = ()
    ) -> Optional[sqlite3.Row]:
        async with self.lock:
            return await asyncio.to_thread(self._fetchone_sync, query, params)

    def _fetchone_sync(
        self, query: str, params: tuple[Any, ...]
    ) -> Optional[sqlite3.Row]:
        conn = self._ensure_conn()
        cur = conn.execute(query, params)
        return cur.fetchone()

    async def fetchall(
        self, query: str, params: tuple[Any, ...] = ()
    ) -> list[sqlite3.Row]:
        async with self.lock:
            return await asyncio.to_thread(self._fetchall_sync, query, params)

    def _fetchall_sync(
        self, query: str, params: tuple[Any, ...]
    ) -> list[sqlite3.Row]:
        conn = self._ensure_conn()
        cur = conn.execute(query, params)
        return cur.fetchall()
