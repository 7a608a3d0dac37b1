import sqlite3
from datetime import datetime, timezone

import pytest

from db import db_conn, recover_orphaned_jobs
from errors import JobBusy, NotFoundFailure
from jobs import (
    JobStatus, claim_next_job, cleanup_finished_jobs, count_waiting_jobs, create_job,
    delete_job, describe_job, from_stored_status, get_job, list_jobs, requeue_job,
    sort_described_jobs, summarise_counts, to_stored_status, update_job_status,
)

URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


def _set_status(job_id, stored):
    with db_conn() as conn:
        conn.execute("UPDATE jobs SET processing_status = ? WHERE id = ?", (stored, job_id))
        conn.commit()


def test_active_stages_collapse_to_processing() -> None:
    assert to_stored_status(JobStatus.WAITING) == "waiting"
    assert to_stored_status(JobStatus.DOWNLOADING) == "processing"
    assert to_stored_status(JobStatus.UPLOADING) == "processing"
    assert to_stored_status(JobStatus.COMPLETED) == "completed"
    assert to_stored_status(JobStatus.ERROR) == "error"


def test_processing_widens_with_live_stage() -> None:
    assert from_stored_status("processing", JobStatus.UPLOADING) is JobStatus.UPLOADING
    assert from_stored_status("processing") is JobStatus.DOWNLOADING
    assert from_stored_status("error") is JobStatus.ERROR
    assert from_stored_status("bogus") is None


def test_stored_status_is_constrained() -> None:
    job_id = create_job(URL, "cat-news")
    with pytest.raises(sqlite3.IntegrityError):
        _set_status(job_id, "downloading")


def test_new_job_is_waiting() -> None:
    job = get_job(create_job(f"  {URL}  ", " cat-news "))

    assert job["processing_status"] == "waiting"
    assert job["source_url"] == URL
    assert job["category_id"] == "cat-news"
    described = describe_job(job)
    assert described["status"] == "waiting"
    assert described["status_description"] == "Waiting to be processed"
    assert described["is_processing"] is True
    assert described["created_at"].endswith("Z")


def test_claim_is_fifo_and_marks_processing() -> None:
    first = create_job(URL, "cat-news")
    second = create_job(URL, "cat-news")

    claimed = claim_next_job()

    assert claimed["id"] == first
    assert claimed["processing_status"] == "processing"
    row = get_job(first)
    assert row["processing_status"] == "processing"
    assert row["started_at"] is not None
    assert get_job(second)["processing_status"] == "waiting"
    assert claim_next_job()["id"] == second
    assert claim_next_job() is None


def test_completion_records_result_fields() -> None:
    job_id = create_job(URL, "cat-news")
    claim_next_job()

    assert update_job_status(
        job_id, JobStatus.COMPLETED,
        title="Clip", storage_url="https://cdn.example.com/media/videos/Clip.mp4",
    )

    row = get_job(job_id)
    assert row["processing_status"] == "completed"
    assert row["storage_url"] == "https://cdn.example.com/media/videos/Clip.mp4"
    assert row["completed_at"] is not None
    assert row["error"] is None


def test_update_of_deleted_job_reports_false() -> None:
    assert update_job_status("nope", JobStatus.ERROR, "boom") is False


def test_delete_guards() -> None:
    waiting = create_job(URL, "cat-news")
    processing = create_job(URL, "cat-news")
    _set_status(processing, "processing")

    with pytest.raises(JobBusy):
        delete_job(processing)
    with pytest.raises(JobBusy):
        delete_job(waiting, in_flight=True)
    with pytest.raises(NotFoundFailure):
        delete_job("nope")

    delete_job(waiting)
    with pytest.raises(NotFoundFailure):
        get_job(waiting)
    assert get_job(processing)["processing_status"] == "processing"


def test_only_failed_jobs_can_be_retried() -> None:
    job_id = create_job(URL, "cat-news")
    with pytest.raises(JobBusy):
        requeue_job(job_id)

    update_job_status(job_id, JobStatus.ERROR, "Download failed")
    requeue_job(job_id)

    row = get_job(job_id)
    assert row["processing_status"] == "waiting"
    assert row["error"] is None
    assert row["completed_at"] is None


def test_cleanup_only_touches_finished_jobs() -> None:
    waiting = create_job(URL, "cat-news")
    done = create_job(URL, "cat-news")
    failed = create_job(URL, "cat-news")
    update_job_status(done, JobStatus.COMPLETED)
    update_job_status(failed, JobStatus.ERROR, "boom")

    assert cleanup_finished_jobs("error") == 1
    assert cleanup_finished_jobs() == 1
    assert [j["id"] for j in list_jobs("all")] == [waiting]


def test_list_filters() -> None:
    waiting = create_job(URL, "cat-news")
    failed = create_job(URL, "cat-news")
    update_job_status(failed, JobStatus.ERROR, "boom")

    assert [j["id"] for j in list_jobs("error")] == [failed]
    assert [j["id"] for j in list_jobs("active")] == [waiting]
    assert {j["id"] for j in list_jobs("default")} == {waiting, failed}
    with pytest.raises(ValueError):
        list_jobs("nonsense")


def test_old_waiting_jobs_do_not_count_for_force_trigger() -> None:
    create_job(URL, "cat-news")
    old = create_job(URL, "cat-news")
    with db_conn() as conn:
        conn.execute("UPDATE jobs SET created_at = datetime('now', '-2 hours') WHERE id = ?", (old,))
        conn.commit()

    assert count_waiting_jobs(3600) == 1


def test_orphan_recovery_spares_active_runs() -> None:
    orphan = create_job(URL, "cat-news")
    live = create_job(URL, "cat-news")
    _set_status(orphan, "processing")
    _set_status(live, "processing")

    assert recover_orphaned_jobs(active_ids=[live]) == 1

    row = get_job(orphan)
    assert row["processing_status"] == "error"
    assert "Interrupted" in row["error"]
    assert get_job(live)["processing_status"] == "processing"


def test_describe_uses_elapsed_time_and_live_stage() -> None:
    job = {
        "id": "j1",
        "processing_status": "processing",
        "created_at": "2026-01-01 00:00:00",
        "started_at": "2026-01-01 00:01:00",
        "completed_at": None,
    }
    now = datetime(2026, 1, 1, 0, 5, tzinfo=timezone.utc)

    described = describe_job(job, JobStatus.UPLOADING, now=now)

    assert described["status"] == "uploading"
    assert described["status_description"] == "Uploading to storage"
    assert described["time_ago"] == "5 minutes"
    assert described["started_at"] == "2026-01-01T00:01:00Z"
    assert described["completed_at"] is None


def test_sorting_and_counts() -> None:
    jobs = [
        {"id": "a", "status": "completed", "created_at": "2026-01-01T00:00:03Z"},
        {"id": "b", "status": "error", "created_at": "2026-01-01T00:00:02Z"},
        {"id": "c", "status": "waiting", "created_at": "2026-01-01T00:00:01Z"},
        {"id": "d", "status": "waiting", "created_at": "2026-01-01T00:00:04Z"},
        {"id": "e", "status": "downloading", "created_at": "2026-01-01T00:00:00Z"},
    ]

    assert [j["id"] for j in sort_described_jobs(jobs)] == ["d", "c", "e", "b", "a"]
    assert summarise_counts(jobs) == {"total": 5, "waiting": 2, "processing": 1, "error": 1, "completed": 1}
