"""
Queue Store - SQLite persistence for the processing queue

Tables:
- queue_jobs:   one row per job (status, result JSON, error, quota flag)
- queue_meta:   queue-level flags (rate_limit_hit)
- queue_photos: photo blobs keyed by job id, written once at enqueue
- usage_log:    billable analyses, read by the monthly quota

A queue snapshot is written in a single transaction, so a crash leaves
either the previous snapshot or the new one, never a mix.
"""

import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from config import DATABASE, DB_PATH, MAX_PHOTOS_PER_JOB, DatabaseConfig
from services.exceptions import PersistenceError
from services.processing_queue import ProcessingQueue

logger = logging.getLogger(__name__)


class QueueStore:
    """
    Durable store for the queue, its photos and the usage log.

    Usage:
        store = QueueStore("resell_queue.db")
        queue = store.load_queue()
        ...
        store.save_queue(queue)
    """

    def __init__(self, path: Optional[str] = None, config: DatabaseConfig = DATABASE):
        self.path = str(path or DB_PATH)
        self.config = config
        self.conn: Optional[sqlite3.Connection] = None
        self._init_db()
        logger.info(f"[STORE] Queue store initialized at: {self.path}")

    def _init_db(self):
        """Open the connection and create tables"""
        try:
            self.conn = sqlite3.connect(self.path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row

            if self.config.wal_mode and self.path != ":memory:":
                self.conn.execute("PRAGMA journal_mode=WAL")
            self.conn.execute(f"PRAGMA busy_timeout={int(self.config.busy_timeout)}")
            self.conn.execute(f"PRAGMA synchronous={self.config.synchronous}")

            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS queue_jobs (
                    id TEXT PRIMARY KEY,
                    position INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    result TEXT,
                    error_message TEXT,
                    counted_against_quota INTEGER DEFAULT 0,
                    created_at TEXT,
                    updated_at TEXT
                )
            """)

            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS queue_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)

            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS queue_photos (
                    job_id TEXT NOT NULL,
                    idx INTEGER NOT NULL,
                    data BLOB NOT NULL,
                    PRIMARY KEY (job_id, idx)
                )
            """)

            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS usage_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind TEXT NOT NULL,
                    metadata TEXT,
                    timestamp TEXT NOT NULL
                )
            """)

            self.conn.execute("CREATE INDEX IF NOT EXISTS idx_usage_kind_ts ON usage_log(kind, timestamp)")
            self.conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError("initialize", cause=e)

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None

    # ============================================================
    # Queue snapshot
    # ============================================================

    def save_queue(self, queue: ProcessingQueue) -> None:
        """Replace the persisted snapshot with the queue's current state"""
        rows = [
            (
                job.id,
                job.position,
                job.status.value,
                json.dumps(job.result.to_dict(rounded=False)) if job.result else None,
                job.error_message,
                1 if job.counted_against_quota else 0,
                job.created_at,
                job.updated_at,
            )
            for job in queue.jobs
        ]
        try:
            with self.conn:
                self.conn.execute("DELETE FROM queue_jobs")
                self.conn.executemany("""
                    INSERT INTO queue_jobs
                    (id, position, status, result, error_message, counted_against_quota, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, rows)
                self.conn.execute(
                    "INSERT OR REPLACE INTO queue_meta (key, value) VALUES ('rate_limit_hit', ?)",
                    ("1" if queue.rate_limit_hit else "0",),
                )
                # Photos of jobs that are gone
                self.conn.execute("DELETE FROM queue_photos WHERE job_id NOT IN (SELECT id FROM queue_jobs)")
        except sqlite3.Error as e:
            raise PersistenceError("save_queue", cause=e)

    def load_queue(self, max_photos: int = MAX_PHOTOS_PER_JOB) -> ProcessingQueue:
        """
        Rebuild the queue from disk.

        The queue comes back idle: not running, no current job, and any job
        that was processing when the snapshot was taken is pending again.
        """
        try:
            rows = self.conn.execute("SELECT * FROM queue_jobs ORDER BY position").fetchall()
            meta = self.conn.execute("SELECT value FROM queue_meta WHERE key = 'rate_limit_hit'").fetchone()
        except sqlite3.Error as e:
            raise PersistenceError("load_queue", cause=e)

        jobs = []
        photos = {}
        for row in rows:
            job = dict(row)
            job["has_result"] = job["result"] is not None
            if job["result"]:
                try:
                    job["result"] = json.loads(job["result"])
                except ValueError as e:
                    logger.warning(f"[STORE] Unreadable result for job {row['id'][:8]}: {e}")
                    job["result"] = None
            jobs.append(job)
            photos[row["id"]] = self.load_photos(row["id"])

        data = {
            "jobs": jobs,
            "rate_limit_hit": bool(meta and meta["value"] == "1"),
        }
        queue = ProcessingQueue.from_dict(data, photos, max_photos=max_photos)
        logger.info(f"[STORE] Loaded {len(queue)} job(s) from {self.path}")
        return queue

    # ============================================================
    # Photos
    # ============================================================

    def save_photos(self, job_id: str, photos: Sequence[bytes]) -> None:
        try:
            with self.conn:
                self.conn.execute("DELETE FROM queue_photos WHERE job_id = ?", (job_id,))
                self.conn.executemany(
                    "INSERT INTO queue_photos (job_id, idx, data) VALUES (?, ?, ?)",
                    [(job_id, idx, sqlite3.Binary(data)) for idx, data in enumerate(photos)],
                )
        except sqlite3.Error as e:
            raise PersistenceError("save_photos", cause=e)

    def load_photos(self, job_id: str) -> List[bytes]:
        try:
            rows = self.conn.execute(
                "SELECT data FROM queue_photos WHERE job_id = ? ORDER BY idx", (job_id,)
            ).fetchall()
        except sqlite3.Error as e:
            raise PersistenceError("load_photos", cause=e)
        return [bytes(row["data"]) for row in rows]

    def delete_photos(self, job_id: str) -> None:
        try:
            with self.conn:
                self.conn.execute("DELETE FROM queue_photos WHERE job_id = ?", (job_id,))
        except sqlite3.Error as e:
            raise PersistenceError("delete_photos", cause=e)

    def clear_photos(self) -> None:
        try:
            with self.conn:
                self.conn.execute("DELETE FROM queue_photos")
        except sqlite3.Error as e:
            raise PersistenceError("clear_photos", cause=e)

    # ============================================================
    # Usage log
    # ============================================================

    def record_usage(self, kind: str, metadata: Dict[str, Any], timestamp: datetime) -> None:
        try:
            with self.conn:
                self.conn.execute(
                    "INSERT INTO usage_log (kind, metadata, timestamp) VALUES (?, ?, ?)",
                    (kind, json.dumps(metadata or {}), timestamp.isoformat()),
                )
        except sqlite3.Error as e:
            raise PersistenceError("record_usage", cause=e)

    def count_usage(self, kind: str, since: datetime) -> int:
        try:
            row = self.conn.execute(
                "SELECT COUNT(*) AS n FROM usage_log WHERE kind = ? AND timestamp >= ?",
                (kind, since.isoformat()),
            ).fetchone()
        except sqlite3.Error as e:
            raise PersistenceError("count_usage", cause=e)
        return row["n"] if row else 0
