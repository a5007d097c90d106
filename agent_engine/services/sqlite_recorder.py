"""
SQLite-backed execution recorder.

Tables:
- agent_executions: one row per dispatch, updated when it settles
- agent_stats: rolling per-agent counters
- workflow_executions: one row per finished cross-agent run

Write failures are logged and never fail the execution being recorded.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, List, Optional, Union

from agent_engine.core.models import (
    AgentStats,
    Execution,
    ExecutionStatus,
    WorkflowRun,
    utcnow,
)

LOGGER = logging.getLogger(__name__)

_CREATE_EXECUTIONS = """
CREATE TABLE IF NOT EXISTS agent_executions (
    id              TEXT PRIMARY KEY,
    agent_name      TEXT NOT NULL,
    task            TEXT NOT NULL,
    status          TEXT NOT NULL CHECK(status IN ('running', 'completed', 'failed')),
    started_at      TEXT NOT NULL,
    completed_at    TEXT,
    duration_ms     REAL,
    success         INTEGER,
    input_data      TEXT,
    output_data     TEXT,
    error_message   TEXT,
    context         TEXT
)
"""

_CREATE_STATS = """
CREATE TABLE IF NOT EXISTS agent_stats (
    agent_name              TEXT PRIMARY KEY,
    total_executions        INTEGER NOT NULL DEFAULT 0,
    successful_executions   INTEGER NOT NULL DEFAULT 0,
    failed_executions       INTEGER NOT NULL DEFAULT 0,
    avg_duration_ms         REAL NOT NULL DEFAULT 0,
    last_execution          TEXT
)
"""

_CREATE_WORKFLOWS = """
CREATE TABLE IF NOT EXISTS workflow_executions (
    id              TEXT PRIMARY KEY,
    name            TEXT NOT NULL,
    status          TEXT NOT NULL CHECK(status IN ('completed', 'failed')),
    started_at      TEXT,
    completed_at    TEXT,
    duration_ms     REAL,
    agents          TEXT,
    results         TEXT,
    error_message   TEXT
)
"""


def open_db(db_path: Union[str, Path]) -> sqlite3.Connection:
    """Open (or create) the recorder database and ensure its tables exist."""
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000")
    if str(db_path) != ":memory:":
        conn.execute("PRAGMA journal_mode = WAL")
    for ddl in (_CREATE_EXECUTIONS, _CREATE_STATS, _CREATE_WORKFLOWS):
        conn.execute(ddl)
    conn.commit()
    return conn


def _dumps(value: Any) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class SQLiteRecorder:
    """Recorder persisting executions and statistics to a SQLite file."""

    def __init__(self, db_path: Union[str, Path]) -> None:
        self.db_path = db_path
        self._conn = open_db(db_path)

    def close(self) -> None:
        self._conn.close()

    async def record_execution_start(self, execution: Execution) -> None:
        try:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO agent_executions
                        (id, agent_name, task, status, started_at, input_data, context)
                    VALUES (:id, :agent_name, :task, :status, :started_at, :input, :context)
                    """,
                    {
                        "id": execution.id,
                        "agent_name": execution.agent_name,
                        "task": execution.task,
                        "status": execution.status.value,
                        "started_at": _iso(execution.started_at),
                        "input": _dumps(execution.input),
                        "context": _dumps(execution.context_snapshot),
                    },
                )
        except sqlite3.Error as exc:
            LOGGER.warning("Failed to record execution start %s: %s", execution.id, exc)

    async def record_execution_complete(self, execution: Execution) -> None:
        success = 1 if execution.success else 0
        try:
            with self._conn:
                self._conn.execute(
                    """
                    UPDATE agent_executions
                    SET status = :status, completed_at = :completed_at,
                        duration_ms = :duration_ms, success = :success,
                        output_data = :output, error_message = :error
                    WHERE id = :id
                    """,
                    {
                        "id": execution.id,
                        "status": execution.status.value,
                        "completed_at": _iso(execution.completed_at),
                        "duration_ms": execution.duration_ms,
                        "success": success,
                        "output": _dumps(execution.output),
                        "error": execution.error,
                    },
                )
                self._conn.execute(
                    """
                    INSERT INTO agent_stats
                        (agent_name, total_executions, successful_executions,
                         failed_executions, avg_duration_ms, last_execution)
                    VALUES (:agent_name, 1, :success, :failed, :duration_ms, :completed_at)
                    ON CONFLICT(agent_name) DO UPDATE SET
                        total_executions = total_executions + 1,
                        successful_executions = successful_executions + :success,
                        failed_executions = failed_executions + :failed,
                        avg_duration_ms = avg_duration_ms
                            + (:duration_ms - avg_duration_ms) / (total_executions + 1),
                        last_execution = :completed_at
                    """,
                    {
                        "agent_name": execution.agent_name,
                        "success": success,
                        "failed": 1 - success,
                        "duration_ms": execution.duration_ms or 0.0,
                        "completed_at": _iso(execution.completed_at),
                    },
                )
        except sqlite3.Error as exc:
            LOGGER.warning("Failed to record execution completion %s: %s", execution.id, exc)

    async def record_workflow_execution(self, run: WorkflowRun) -> None:
        try:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT OR REPLACE INTO workflow_executions
                        (id, name, status, started_at, completed_at, duration_ms,
                         agents, results, error_message)
                    VALUES (:id, :name, :status, :started_at, :completed_at, :duration_ms,
                            :agents, :results, :error)
                    """,
                    {
                        "id": run.id,
                        "name": run.name,
                        "status": run.status.value,
                        "started_at": _iso(run.started_at),
                        "completed_at": _iso(run.completed_at),
                        "duration_ms": run.duration_ms,
                        "agents": _dumps([step.agent for step in run.steps]),
                        "results": _dumps(run.results or None),
                        "error": run.error,
                    },
                )
        except sqlite3.Error as exc:
            LOGGER.warning("Failed to record workflow execution %s: %s", run.id, exc)

    async def get_agent_stats(self, agent_name: str) -> AgentStats:
        """Aggregate statistics for one agent; zeroed when absent or unreadable."""
        cutoff = _iso(utcnow() - timedelta(hours=24))
        try:
            row = self._conn.execute(
                "SELECT * FROM agent_stats WHERE agent_name = ?", (agent_name,)
            ).fetchone()
            if row is None:
                return AgentStats(agent_name=agent_name)
            recent = self._conn.execute(
                "SELECT COUNT(*) FROM agent_executions WHERE agent_name = ? AND started_at > ?",
                (agent_name, cutoff),
            ).fetchone()[0]
        except sqlite3.Error as exc:
            LOGGER.warning("Failed to read stats for agent %s: %s", agent_name, exc)
            return AgentStats(agent_name=agent_name)
        return AgentStats(
            agent_name=agent_name,
            total_executions=row["total_executions"],
            successful_executions=row["successful_executions"],
            failed_executions=row["failed_executions"],
            avg_duration_ms=row["avg_duration_ms"],
            last_execution=(
                datetime.fromisoformat(row["last_execution"]) if row["last_execution"] else None
            ),
            recent_executions_24h=recent,
        )

    async def list_executions(
        self, agent_name: Optional[str] = None, limit: int = 50
    ) -> List[Execution]:
        query = "SELECT * FROM agent_executions"
        params: List[Any] = []
        if agent_name is not None:
            query += " WHERE agent_name = ?"
            params.append(agent_name)
        query += " ORDER BY started_at DESC, rowid DESC LIMIT ?"
        params.append(limit)
        return [_row_to_execution(row) for row in self._conn.execute(query, params).fetchall()]


def _row_to_execution(row: sqlite3.Row) -> Execution:
    success = row["success"]
    return Execution(
        id=row["id"],
        agent_name=row["agent_name"],
        task=row["task"],
        input=json.loads(row["input_data"]) if row["input_data"] else None,
        context_snapshot=json.loads(row["context"]) if row["context"] else None,
        status=ExecutionStatus(row["status"]),
        started_at=datetime.fromisoformat(row["started_at"]),
        completed_at=datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None,
        duration_ms=row["duration_ms"],
        success=None if success is None else bool(success),
        output=json.loads(row["output_data"]) if row["output_data"] else None,
        error=row["error_message"],
    )
