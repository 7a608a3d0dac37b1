#!/usr/bin/env python3
"""
TubeIngest - YouTube ingestion service for the CMS admin dashboard
Queues YouTube URLs, downloads Portuguese-audio 1080p cuts with yt-dlp, pushes them to object storage, records them in the database
"""

import asyncio
import logging
from typing import Optional

from fastapi import FastAPI, HTTPException

from constants import VERSION, LOG_LEVEL
from db import init_db
from errors import NotFoundFailure, JobBusy
from jobs import (
    JOB_FILTERS, create_job, get_job, get_jobs_by_ids, list_jobs, delete_job,
    requeue_job, cleanup_finished_jobs, describe_job, sort_described_jobs, summarise_counts,
)
from models import EnqueueRequest, StatusQueryRequest, SettingsUpdate
from processing_queue import ProcessingQueue
from settings import (
    get_setting, set_setting, get_download_dir,
    SETTINGS_SCHEMA, SENSITIVE_SETTINGS, _get_typed_setting, _is_env_override,
)
from utils import is_http_url
from youtube import _has_valid_cookie_entries, _sync_cookies_file

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("tubeingest")

# =============================================================================
# Application Setup
# =============================================================================

app = FastAPI(title="TubeIngest", version=VERSION)

# Initialise database
init_db()

# Sync cookies file from settings at startup
_sync_cookies_file()

# One queue per process, reached through app.state
app.state.queue = ProcessingQueue()


def get_queue() -> ProcessingQueue:
    return app.state.queue


@app.on_event("startup")
async def startup():
    await get_queue().start()


@app.on_event("shutdown")
async def shutdown():
    await get_queue().stop()


# =============================================================================
# Basic Routes
# =============================================================================

@app.get("/api/health")
def health():
    return {"ok": True, "version": VERSION, "queue": get_queue().snapshot()}


@app.get("/api/config")
def get_config():
    """Expose server configuration and version for the admin UI"""
    bucket = get_setting("s3_bucket", "")
    return {
        "version": VERSION,
        "bucket": bucket,
        "storage_configured": bool(bucket),
        "download_dir": str(get_download_dir()),
    }


# =============================================================================
# Settings API
# =============================================================================

@app.get("/api/settings")
def get_settings():
    """Get all settings. Sensitive values are masked unless empty."""
    settings = {}
    env_overrides = []

    for key, schema in SETTINGS_SCHEMA.items():
        value = _get_typed_setting(key)
        is_sensitive = schema.get("sensitive", False)

        # Track which settings are locked by env vars
        if _is_env_override(key):
            env_overrides.append(key)

        # Mask sensitive values (show that something is set, but not what)
        if is_sensitive and value:
            settings[key] = "••••••••"
        else:
            settings[key] = value

    return {
        "settings": settings,
        "env_overrides": env_overrides,  # Frontend can disable these fields
        "sensitive_fields": sorted(SENSITIVE_SETTINGS)
    }


@app.put("/api/settings")
def update_settings(updates: SettingsUpdate):
    """Update settings. Only non-None values are updated. Returns updated settings."""
    updated_keys = []

    for key, value in updates.model_dump(exclude_none=True).items():
        if key not in SETTINGS_SCHEMA:
            continue

        # Don't allow updating settings that are locked by env vars
        if _is_env_override(key):
            continue

        value = str(value)

        # Validate cookie format before saving
        if key == "youtube_cookies" and value.strip() and not _has_valid_cookie_entries(value):
            raise HTTPException(
                status_code=400,
                detail="Invalid cookies format. Paste Netscape-format cookies.txt content."
            )

        set_setting(key, value)
        updated_keys.append(key)

    # Sync cookies file if YouTube cookies were updated
    if "youtube_cookies" in updated_keys:
        _sync_cookies_file()

    return {
        "updated": updated_keys,
        "settings": get_settings()["settings"]
    }


# =============================================================================
# Ingestion Jobs API
# =============================================================================

@app.post("/api/jobs")
async def enqueue(request: EnqueueRequest):
    """Queue a YouTube URL for ingestion into a category"""
    url = request.url.strip()
    category_id = request.category_id.strip()
    if not url or not category_id:
        raise HTTPException(status_code=400, detail="Video URL and category ID are required")
    if not is_http_url(url):
        raise HTTPException(status_code=400, detail="Video URL must be an http(s) URL")

    job_id = await asyncio.to_thread(create_job, url, category_id)
    logger.info("Queued job %s for %s", job_id, url)
    get_queue().kick()
    return {"job_id": job_id, "status": "waiting"}


@app.post("/api/jobs/process")
async def force_process():
    """Start draining the queue if nothing is currently being processed"""
    return await get_queue().force_process()


@app.get("/api/jobs/status")
async def jobs_status(filter: str = "default"):
    """Active, failed and last-24h jobs (or one of the narrower filters)"""
    if filter not in JOB_FILTERS:
        raise HTTPException(status_code=400, detail=f"Unknown filter: {filter}")
    queue = get_queue()
    rows = await asyncio.to_thread(list_jobs, filter)
    jobs = sort_described_jobs([describe_job(row, queue.stage_of(row["id"])) for row in rows])
    return {"jobs": jobs, "count": summarise_counts(jobs)}


@app.post("/api/jobs/status")
async def jobs_status_by_id(request: StatusQueryRequest):
    """Status for a specific set of jobs (what the admin UI polls)"""
    job_ids = list(dict.fromkeys(j for j in request.job_ids if j))
    if not job_ids:
        raise HTTPException(status_code=400, detail="Job IDs are required")

    queue = get_queue()
    rows = await asyncio.to_thread(get_jobs_by_ids, job_ids)
    if not rows:
        raise HTTPException(status_code=404, detail="No matching jobs found")

    found = {row["id"] for row in rows}
    return {
        "jobs": [describe_job(row, queue.stage_of(row["id"])) for row in rows],
        "missing": [j for j in job_ids if j not in found],
    }


@app.delete("/api/jobs/cleanup")
async def cleanup_jobs(status: Optional[str] = None):
    """Delete completed and/or failed jobs"""
    if status not in (None, "completed", "error"):
        raise HTTPException(status_code=400, detail="Status must be 'completed' or 'error'")
    deleted = await asyncio.to_thread(cleanup_finished_jobs, status)
    return {"deleted": deleted}


@app.get("/api/jobs/{job_id}")
async def get_job_status(job_id: str):
    """Get a specific job"""
    try:
        row = await asyncio.to_thread(get_job, job_id)
    except NotFoundFailure:
        raise HTTPException(status_code=404, detail="Job not found")
    return describe_job(row, get_queue().stage_of(job_id))


@app.post("/api/jobs/{job_id}/retry")
async def retry_job(job_id: str):
    """Re-queue a failed job"""
    try:
        await asyncio.to_thread(requeue_job, job_id)
    except NotFoundFailure:
        raise HTTPException(status_code=404, detail="Job not found")
    except JobBusy as e:
        raise HTTPException(status_code=400, detail=str(e))
    get_queue().kick()
    return {"job_id": job_id, "status": "waiting"}


@app.delete("/api/jobs/{job_id}")
async def remove_job(job_id: str):
    """Delete a job that is not being processed"""
    try:
        await asyncio.to_thread(delete_job, job_id, get_queue().is_active(job_id))
    except NotFoundFailure:
        raise HTTPException(status_code=404, detail="Job not found")
    except JobBusy as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
