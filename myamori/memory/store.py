"""SQLite store for Myamori.

4 tables:
    messages, audit_logs, pending_approvals, scheduled_jobs
"""

from __future__ import annotations

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from loguru import logger

from myamori.core.timeutil import to_iso, utcnow

INPUT_SUMMARY_MAX_LENGTH = 200

_JOB_COLUMNS = ("name", "cron_expr", "prompt", "enabled", "next_run_at", "updated_at")


def _truncate(value: str, max_length: int) -> str:
    if len(value) <= max_length:
        return value
    return value[: max_length - 3] + "..."


def _safe_dumps(value: Any) -> str:
    try:
        return json.dumps(value, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return "[Unserializable input]"


class SQLiteStore:
    """SQLite persistence: conversation history, jobs, approvals, audit."""

    def __init__(self, db_path: str = "data/myamori.db"):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        logger.info(f"SQLiteStore initialized: {db_path}")

    @contextmanager
    def _get_conn(self):
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        try:
            yield conn
        finally:
            conn.close()

    def _init_db(self):
        with self._get_conn() as conn:
            conn.executescript(_SCHEMA)
            conn.commit()

    # ════════════════════════════════════════════════════════════
    # MESSAGES
    # ════════════════════════════════════════════════════════════

    def save_messages(
        self, chat_id: str, user_content: str, assistant_content: str
    ) -> None:
        """Append one user/assistant exchange to the chat history."""
        now = to_iso(utcnow())
        with self._get_conn() as conn:
            conn.executemany(
                "INSERT INTO messages (chat_id, role, content, created_at) "
                "VALUES (?, ?, ?, ?)",
                [
                    (chat_id, "user", user_content, now),
                    (chat_id, "assistant", assistant_content, now),
                ],
            )
            conn.commit()

    def get_recent_messages(self, chat_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """Last ``limit`` messages of a chat, oldest first."""
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT role, content FROM messages WHERE chat_id = ? "
                "ORDER BY id DESC LIMIT ?",
                (chat_id, limit),
            ).fetchall()
        return [dict(r) for r in reversed(rows)]

    # ════════════════════════════════════════════════════════════
    # AUDIT LOG
    # ════════════════════════════════════════════════════════════

    def log_tool_execution(
        self,
        chat_id: str,
        tool_name: str,
        status: str,
        input: Any,
        duration_ms: int,
    ) -> None:
        """Record a tool execution. Never raises."""
        metadata = {
            "toolName": tool_name,
            "status": status,
            "inputSummary": _truncate(_safe_dumps(input), INPUT_SUMMARY_MAX_LENGTH),
            "durationMs": duration_ms,
        }
        self._insert_audit("tool_execution", chat_id, metadata)

    def log_llm_call(
        self,
        chat_id: str,
        model: str,
        prompt_tokens: int,
        completion_tokens: int,
        duration_ms: int,
    ) -> None:
        """Record a model invocation. Never raises."""
        metadata = {
            "model": model,
            "promptTokens": prompt_tokens,
            "completionTokens": completion_tokens,
            "durationMs": duration_ms,
        }
        self._insert_audit("llm_call", chat_id, metadata)

    def _insert_audit(self, kind: str, chat_id: str, metadata: dict[str, Any]) -> None:
        try:
            with self._get_conn() as conn:
                conn.execute(
                    "INSERT INTO audit_logs (id, type, chat_id, metadata, created_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (
                        uuid.uuid4().hex,
                        kind,
                        chat_id,
                        json.dumps(metadata),
                        to_iso(utcnow()),
                    ),
                )
                conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to write {kind} audit log: {e}")

    def get_audit_logs(
        self, chat_id: str, kind: str | None = None
    ) -> list[dict[str, Any]]:
        query = "SELECT * FROM audit_logs WHERE chat_id = ?"
        params: list[Any] = [chat_id]
        if kind:
            query += " AND type = ?"
            params.append(kind)
        query += " ORDER BY created_at"
        with self._get_conn() as conn:
            rows = conn.execute(query, params).fetchall()
        result = []
        for r in rows:
            entry = dict(r)
            entry["metadata"] = json.loads(entry["metadata"])
            result.append(entry)
        return result

    # ════════════════════════════════════════════════════════════
    # APPROVALS
    # ════════════════════════════════════════════════════════════

    def add_approval(
        self,
        approval_id: str,
        chat_id: str,
        thread_id: int | None,
        tool_name: str,
        tool_input: str,
        created_at: datetime,
        expires_at: datetime,
    ) -> None:
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO pending_approvals
                   (id, chat_id, thread_id, tool_name, tool_input, status,
                    created_at, expires_at)
                   VALUES (?, ?, ?, ?, ?, 'pending', ?, ?)""",
                (
                    approval_id,
                    chat_id,
                    thread_id,
                    tool_name,
                    tool_input,
                    to_iso(created_at),
                    to_iso(expires_at),
                ),
            )
            conn.commit()

    def get_approval(self, approval_id: str) -> dict[str, Any] | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM pending_approvals WHERE id = ?", (approval_id,)
            ).fetchone()
        return dict(row) if row else None

    def list_approvals(
        self, chat_id: str | None = None, status: str | None = None
    ) -> list[dict[str, Any]]:
        query = "SELECT * FROM pending_approvals WHERE 1 = 1"
        params: list[Any] = []
        if chat_id:
            query += " AND chat_id = ?"
            params.append(chat_id)
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at"
        with self._get_conn() as conn:
            rows = conn.execute(query, params).fetchall()
        return [dict(r) for r in rows]

    def transition_approval(self, approval_id: str, expected: str, status: str) -> bool:
        """Compare-and-set the status. Returns True if the row was updated."""
        with self._get_conn() as conn:
            cursor = conn.execute(
                "UPDATE pending_approvals SET status = ? WHERE id = ? AND status = ?",
                (status, approval_id, expected),
            )
            conn.commit()
        return cursor.rowcount > 0

    # ════════════════════════════════════════════════════════════
    # SCHEDULED JOBS
    # ════════════════════════════════════════════════════════════

    def add_scheduled_job(
        self,
        job_id: str,
        name: str,
        cron_expr: str,
        prompt: str,
        chat_id: str,
        next_run_at: datetime,
        thread_id: int | None = None,
        now: datetime | None = None,
    ) -> None:
        now_iso = to_iso(now or utcnow())
        with self._get_conn() as conn:
            conn.execute(
                """INSERT INTO scheduled_jobs
                   (id, name, cron_expr, prompt, chat_id, thread_id, enabled,
                    next_run_at, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?, ?)""",
                (
                    job_id,
                    name,
                    cron_expr,
                    prompt,
                    chat_id,
                    thread_id,
                    to_iso(next_run_at),
                    now_iso,
                    now_iso,
                ),
            )
            conn.commit()
        logger.debug(f"Scheduled job stored: {job_id} ({cron_expr})")

    def get_scheduled_job(self, job_id: str) -> dict[str, Any] | None:
        with self._get_conn() as conn:
            row = conn.execute(
                "SELECT * FROM scheduled_jobs WHERE id = ?", (job_id,)
            ).fetchone()
        return dict(row) if row else None

    def list_scheduled_jobs(self, chat_id: str | None = None) -> list[dict[str, Any]]:
        with self._get_conn() as conn:
            if chat_id:
                rows = conn.execute(
                    "SELECT * FROM scheduled_jobs WHERE chat_id = ? ORDER BY created_at",
                    (chat_id,),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM scheduled_jobs ORDER BY created_at"
                ).fetchall()
        return [dict(r) for r in rows]

    def get_due_jobs(self, now: datetime) -> list[dict[str, Any]]:
        """Enabled jobs with next_run_at <= now (inclusive)."""
        with self._get_conn() as conn:
            rows = conn.execute(
                "SELECT * FROM scheduled_jobs WHERE enabled = 1 AND next_run_at <= ? "
                "ORDER BY next_run_at",
                (to_iso(now),),
            ).fetchall()
        return [dict(r) for r in rows]

    def update_scheduled_job(self, job_id: str, **fields: Any) -> bool:
        """Update whitelisted job columns. Returns True if the job exists."""
        updates: dict[str, Any] = {}
        for key, value in fields.items():
            if key not in _JOB_COLUMNS:
                raise ValueError(f"Unknown scheduled job column: {key}")
            if isinstance(value, datetime):
                value = to_iso(value)
            elif isinstance(value, bool):
                value = int(value)
            updates[key] = value
        updates.setdefault("updated_at", to_iso(utcnow()))

        assignments = ", ".join(f"{key} = ?" for key in updates)
        with self._get_conn() as conn:
            cursor = conn.execute(
                f"UPDATE scheduled_jobs SET {assignments} WHERE id = ?",
                (*updates.values(), job_id),
            )
            conn.commit()
        return cursor.rowcount > 0

    def reschedule_job(self, job_id: str, next_run_at: datetime, updated_at: datetime) -> None:
        self.update_scheduled_job(job_id, next_run_at=next_run_at, updated_at=updated_at)

    def delete_scheduled_job(self, job_id: str, chat_id: str | None = None) -> bool:
        """Delete a job, optionally only when it belongs to ``chat_id``."""
        with self._get_conn() as conn:
            if chat_id is None:
                cursor = conn.execute("DELETE FROM scheduled_jobs WHERE id = ?", (job_id,))
            else:
                cursor = conn.execute(
                    "DELETE FROM scheduled_jobs WHERE id = ? AND chat_id = ?",
                    (job_id, chat_id),
                )
            conn.commit()
        return cursor.rowcount > 0


_SCHEMA = """
-- 1. Conversation history
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    chat_id TEXT NOT NULL,
    role TEXT NOT NULL CHECK (role IN ('user', 'assistant')),
    content TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_messages_chat_created ON messages(chat_id, created_at);

-- 2. Audit log (llm calls + tool executions)
CREATE TABLE IF NOT EXISTS audit_logs (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL CHECK (type IN ('llm_call', 'tool_execution')),
    chat_id TEXT NOT NULL,
    metadata TEXT NOT NULL,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_audit_logs_chat_created ON audit_logs(chat_id, created_at);

-- 3. Approval ledger (never deleted)
CREATE TABLE IF NOT EXISTS pending_approvals (
    id TEXT PRIMARY KEY,
    chat_id TEXT NOT NULL,
    thread_id INTEGER,
    tool_name TEXT NOT NULL,
    tool_input TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'approved', 'rejected', 'expired')),
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL
);

-- 4. Scheduled jobs
CREATE TABLE IF NOT EXISTS scheduled_jobs (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    cron_expr TEXT NOT NULL,
    prompt TEXT NOT NULL,
    chat_id TEXT NOT NULL,
    thread_id INTEGER,
    enabled INTEGER NOT NULL DEFAULT 1,
    next_run_at TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_scheduled_jobs_due ON scheduled_jobs(enabled, next_run_at);
"""
