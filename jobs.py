"""
TubeIngest - Job Store

Row-level access to the jobs table, the in-memory <-> stored status
projection, and the presentational shaping used by status queries.

All functions here are blocking sqlite3 calls; async callers go through
asyncio.to_thread.
"""

import sqlite3
import uuid
from datetime import datetime, timezone
from enum import Enum

from constants import (
    FORCE_PROCESS_WINDOW, RECENT_JOBS_WINDOW,
    STATUS_WAITING, STATUS_DOWNLOADING, STATUS_UPLOADING, STATUS_COMPLETED, STATUS_ERROR,
    STORED_WAITING, STORED_PROCESSING, STORED_COMPLETED, STORED_ERROR,
)
from db import db_conn
from errors import NotFoundFailure, JobBusy
from utils import ensure_utc_suffix, parse_db_timestamp, format_time_ago


class JobStatus(str, Enum):
    WAITING = STATUS_WAITING
    DOWNLOADING = STATUS_DOWNLOADING
    UPLOADING = STATUS_UPLOADING
    COMPLETED = STATUS_COMPLETED
    ERROR = STATUS_ERROR

    @property
    def is_active(self) -> bool:
        return self in (JobStatus.DOWNLOADING, JobStatus.UPLOADING)


# Lossy: the jobs CHECK constraint only admits four values, so both active
# stages collapse to 'processing'. Widening the schema only needs this map
# (and from_stored_status) to change.
_STORED_STATUS = {
    JobStatus.WAITING: STORED_WAITING,
    JobStatus.DOWNLOADING: STORED_PROCESSING,
    JobStatus.UPLOADING: STORED_PROCESSING,
    JobStatus.COMPLETED: STORED_COMPLETED,
    JobStatus.ERROR: STORED_ERROR,
}


def to_stored_status(status: JobStatus) -> str:
    return _STORED_STATUS[status]


def from_stored_status(stored: str, stage: JobStatus | None = None) -> JobStatus | None:
    """Widen a stored status back to the state machine.

    'processing' needs the live stage from the queue registry; without one it
    is reported as downloading (the stage every run starts in).
    """
    if stored == STORED_PROCESSING:
        if stage is not None and stage.is_active:
            return stage
        return JobStatus.DOWNLOADING
    try:
        return JobStatus(stored)
    except ValueError:
        return None


STATUS_DESCRIPTIONS = {
    JobStatus.WAITING: "Waiting to be processed",
    JobStatus.DOWNLOADING: "Downloading video from YouTube",
    JobStatus.UPLOADING: "Uploading to storage",
    JobStatus.COMPLETED: "Processing complete",
    JobStatus.ERROR: "Processing failed",
}

# Sort order for the default status listing
_STATUS_RANK = {
    JobStatus.WAITING: 1,
    JobStatus.DOWNLOADING: 2,
    JobStatus.UPLOADING: 3,
    JobStatus.ERROR: 4,
    JobStatus.COMPLETED: 5,
}

JOB_FILTERS = ("default", "active", "error", "recent", "all")


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def create_job(source_url: str, category_id: str) -> str:
    """Insert a waiting job. Being in 'waiting' is all it takes to be queued."""
    job_id = uuid.uuid4().hex
    with db_conn() as conn:
        conn.execute(
            "INSERT INTO jobs (id, source_url, category_id, processing_status) VALUES (?, ?, ?, ?)",
            (job_id, source_url.strip(), category_id.strip(), STORED_WAITING)
        )
        conn.commit()
    return job_id


def claim_next_job() -> dict | None:
    """Move the oldest waiting job to 'processing' and return it.

    The UPDATE is conditional on the row still being 'waiting', so a row
    grabbed by someone else between the SELECT and the UPDATE is skipped
    rather than run twice.
    """
    with db_conn() as conn:
        conn.row_factory = sqlite3.Row
        while True:
            row = conn.execute(
                "SELECT * FROM jobs WHERE processing_status = ? "
                "ORDER BY created_at ASC, rowid ASC LIMIT 1",
                (STORED_WAITING,)
            ).fetchone()
            if row is None:
                return None
            cursor = conn.execute(
                "UPDATE jobs SET processing_status = ?, error = NULL, started_at = datetime('now') "
                "WHERE id = ? AND processing_status = ?",
                (STORED_PROCESSING, row["id"], STORED_WAITING)
            )
            conn.commit()
            if cursor.rowcount == 1:
                job = dict(row)
                job["processing_status"] = STORED_PROCESSING
                return job


def update_job_status(job_id: str, status: JobStatus, error: str | None = None, **fields) -> bool:
    """Single-statement status transition. Returns False if the job no longer exists."""
    values = {"processing_status": to_stored_status(status), "error": error, **fields}
    if status in (JobStatus.COMPLETED, JobStatus.ERROR):
        values["completed_at"] = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
    columns = ", ".join(f"{key} = ?" for key in values)
    with db_conn() as conn:
        cursor = conn.execute(
            f"UPDATE jobs SET {columns} WHERE id = ?",
            (*values.values(), job_id)
        )
        conn.commit()
        return cursor.rowcount == 1


def requeue_job(job_id: str) -> None:
    """Put an errored job back in the queue (manual retry)."""
    job = get_job(job_id)
    if job["processing_status"] != STORED_ERROR:
        raise JobBusy("Only failed jobs can be retried")
    with db_conn() as conn:
        conn.execute(
            "UPDATE jobs SET processing_status = ?, error = NULL, started_at = NULL, completed_at = NULL "
            "WHERE id = ? AND processing_status = ?",
            (STORED_WAITING, job_id, STORED_ERROR)
        )
        conn.commit()


def delete_job(job_id: str, in_flight: bool = False) -> None:
    """Delete a job row unless it is being processed."""
    job = get_job(job_id)
    if in_flight or job["processing_status"] == STORED_PROCESSING:
        raise JobBusy("Cannot delete a job that is currently processing")
    with db_conn() as conn:
        conn.execute(
            "DELETE FROM jobs WHERE id = ? AND processing_status != ?",
            (job_id, STORED_PROCESSING)
        )
        conn.commit()


def cleanup_finished_jobs(status: str | None = None) -> int:
    """Delete completed and/or errored jobs. Never touches waiting or processing rows."""
    if status == STORED_COMPLETED:
        targets = (STORED_COMPLETED,)
    elif status == STORED_ERROR:
        targets = (STORED_ERROR,)
    else:
        targets = (STORED_COMPLETED, STORED_ERROR)
    placeholders = ",".join("?" for _ in targets)
    with db_conn() as conn:
        cursor = conn.execute(f"DELETE FROM jobs WHERE processing_status IN ({placeholders})", targets)
        conn.commit()
        return cursor.rowcount


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get_job(job_id: str) -> dict:
    with db_conn() as conn:
        conn.row_factory = sqlite3.Row
        row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
    if not row:
        raise NotFoundFailure(f"Job not found: {job_id}")
    return dict(row)


def get_jobs_by_ids(job_ids: list[str]) -> list[dict]:
    if not job_ids:
        return []
    placeholders = ",".join("?" for _ in job_ids)
    with db_conn() as conn:
        conn.row_factory = sqlite3.Row
        rows = conn.execute(
            f"SELECT * FROM jobs WHERE id IN ({placeholders}) ORDER BY created_at DESC, rowid DESC",
            list(job_ids)
        ).fetchall()
    return [dict(r) for r in rows]


def list_jobs(filter_name: str = "default") -> list[dict]:
    """Jobs matching one of the implicit filters in JOB_FILTERS."""
    recent = f"created_at >= datetime('now', '-{int(RECENT_JOBS_WINDOW)} seconds')"
    active = f"processing_status IN ('{STORED_WAITING}', '{STORED_PROCESSING}')"
    errored = f"processing_status = '{STORED_ERROR}'"
    where = {
        "default": f"{active} OR {errored} OR {recent}",
        "active": active,
        "error": errored,
        "recent": recent,
        "all": "1 = 1",
    }.get(filter_name)
    if where is None:
        raise ValueError(f"Unknown filter: {filter_name}")
    with db_conn() as conn:
        conn.row_factory = sqlite3.Row
        rows = conn.execute(
            f"SELECT * FROM jobs WHERE {where} ORDER BY created_at DESC, rowid DESC"
        ).fetchall()
    return [dict(r) for r in rows]


def count_waiting_jobs(window_seconds: int = FORCE_PROCESS_WINDOW) -> int:
    """Waiting jobs created within the window (older ones are treated as stale)."""
    with db_conn() as conn:
        row = conn.execute(
            "SELECT COUNT(*) FROM jobs WHERE processing_status = ? "
            "AND created_at > datetime('now', ? || ' seconds')",
            (STORED_WAITING, str(-int(window_seconds)))
        ).fetchone()
    return int(row[0] or 0)


def count_processing_jobs() -> int:
    with db_conn() as conn:
        row = conn.execute(
            "SELECT COUNT(*) FROM jobs WHERE processing_status = ?",
            (STORED_PROCESSING,)
        ).fetchone()
    return int(row[0] or 0)


# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------

def describe_job(job: dict, stage: JobStatus | None = None, now: datetime | None = None) -> dict:
    """Add status, time_ago, status_description and is_processing to a job row."""
    now = now or datetime.now(timezone.utc)
    status = from_stored_status(job.get("processing_status"), stage)
    created = parse_db_timestamp(job.get("created_at"))
    elapsed = (now - created).total_seconds() if created else 0

    described = dict(job)
    described["created_at"] = ensure_utc_suffix(job.get("created_at"))
    described["started_at"] = ensure_utc_suffix(job.get("started_at"))
    described["completed_at"] = ensure_utc_suffix(job.get("completed_at"))
    described["status"] = status.value if status else job.get("processing_status")
    described["time_ago"] = format_time_ago(elapsed)
    described["status_description"] = STATUS_DESCRIPTIONS.get(status, "Unknown status")
    described["is_processing"] = status in (JobStatus.WAITING, JobStatus.DOWNLOADING, JobStatus.UPLOADING)
    return described


def sort_described_jobs(jobs: list[dict]) -> list[dict]:
    """Order by status rank, newest first within a status."""
    by_newest = sorted(jobs, key=lambda j: j.get("created_at") or "", reverse=True)
    return sorted(by_newest, key=lambda j: _STATUS_RANK.get(_as_status(j.get("status")), 99))


def summarise_counts(jobs: list[dict]) -> dict:
    statuses = [j.get("status") for j in jobs]
    return {
        "total": len(jobs),
        "waiting": statuses.count(STATUS_WAITING),
        "processing": statuses.count(STATUS_DOWNLOADING) + statuses.count(STATUS_UPLOADING),
        "error": statuses.count(STATUS_ERROR),
        "completed": statuses.count(STATUS_COMPLETED),
    }


def _as_status(value) -> JobStatus | None:
    try:
        return JobStatus(value)
    except ValueError:
        return None
