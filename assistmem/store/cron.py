from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

from .. import db
from .types import CronJob

if TYPE_CHECKING:
    from ._store import MemoryStore


def _row_to_job(row: sqlite3.Row) -> CronJob:
    return CronJob(
        id=int(row["id"]),
        name=str(row["name"]),
        schedule=str(row["schedule"]),
        prompt=str(row["prompt"]),
        channel=str(row["channel"] or "default"),
        enabled=bool(row["enabled"]),
        session_id=str(row["session_id"] or db.DEFAULT_SESSION_ID),
    )


def save_cron_job(
    store: MemoryStore,
    name: str,
    schedule: str,
    prompt: str,
    channel: str = "default",
    session_id: str = db.DEFAULT_SESSION_ID,
) -> int:
    store.conn.execute(
        """
        INSERT INTO cron_jobs(name, schedule, prompt, channel, session_id, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        ON CONFLICT(name) DO UPDATE SET
            schedule = excluded.schedule,
            prompt = excluded.prompt,
            channel = excluded.channel,
            session_id = excluded.session_id
        """,
        (name, schedule, prompt, channel, session_id, db.now_iso()),
    )
    store.conn.commit()
    row = store.conn.execute("SELECT id FROM cron_jobs WHERE name = ?", (name,)).fetchone()
    return int(row["id"])


def get_cron_jobs(store: MemoryStore, enabled_only: bool = True) -> list[CronJob]:
    sql = "SELECT * FROM cron_jobs"
    if enabled_only:
        sql += " WHERE enabled = 1"
    rows = store.conn.execute(sql + " ORDER BY name").fetchall()
    return [_row_to_job(row) for row in rows]


def set_cron_job_enabled(store: MemoryStore, name: str, enabled: bool) -> bool:
    cur = store.conn.execute(
        "UPDATE cron_jobs SET enabled = ? WHERE name = ?", (1 if enabled else 0, name)
    )
    store.conn.commit()
    return cur.rowcount > 0


def delete_cron_job(store: MemoryStore, name: str) -> bool:
    cur = store.conn.execute("DELETE FROM cron_jobs WHERE name = ?", (name,))
    store.conn.commit()
    return cur.rowcount > 0
