import pytest
from fastapi.testclient import TestClient

import app as app_module
from jobs import JobStatus, claim_next_job, create_job, update_job_status
from processing_queue import ProcessingQueue

URL = "https://www.youtube.com/watch?v=dQw4w9WgXcQ"


@pytest.fixture
def kicks(monkeypatch):
    """Swap in a queue that records kicks instead of draining."""
    queue = ProcessingQueue()
    calls = []
    monkeypatch.setattr(queue, "kick", lambda: calls.append(True) or True)
    monkeypatch.setattr(app_module.app.state, "queue", queue)
    return calls


@pytest.fixture
def client(kicks) -> TestClient:
    # Not used as a context manager, so startup (recovery + orphan monitor) does not run
    return TestClient(app_module.app)


def test_health(client) -> None:
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["queue"] == {"draining": False, "active": []}


def test_enqueue_creates_waiting_job_and_kicks(client, kicks) -> None:
    response = client.post("/api/jobs", json={"url": URL, "category_id": "cat-news"})

    assert response.status_code == 200
    job_id = response.json()["job_id"]
    assert kicks == [True]

    job = client.get(f"/api/jobs/{job_id}").json()
    assert job["status"] == "waiting"
    assert job["source_url"] == URL
    assert job["category_id"] == "cat-news"


@pytest.mark.parametrize("payload, status", [
    ({"url": "ftp://example.com/clip", "category_id": "cat-news"}, 400),
    ({"url": URL, "category_id": "   "}, 400),
    ({"url": "", "category_id": "cat-news"}, 400),
    ({"category_id": "cat-news"}, 400),
    ({"url": URL}, 400),
])
def test_enqueue_validation(client, kicks, payload, status) -> None:
    assert client.post("/api/jobs", json=payload).status_code == status
    assert kicks == []


def test_status_listing_counts(client) -> None:
    waiting = create_job(URL, "cat-news")
    failed = create_job(URL, "cat-news")
    update_job_status(failed, JobStatus.ERROR, "Download failed: boom")

    body = client.get("/api/jobs/status").json()

    assert [j["id"] for j in body["jobs"]] == [waiting, failed]
    assert body["count"] == {"total": 2, "waiting": 1, "processing": 0, "error": 1, "completed": 0}
    assert client.get("/api/jobs/status?filter=bogus").status_code == 400


def test_status_by_ids_reports_missing(client) -> None:
    job_id = create_job(URL, "cat-news")

    body = client.post("/api/jobs/status", json={"job_ids": [job_id, "nope"]}).json()

    assert [j["id"] for j in body["jobs"]] == [job_id]
    assert body["missing"] == ["nope"]
    assert client.post("/api/jobs/status", json={"job_ids": []}).status_code == 400
    assert client.post("/api/jobs/status", json={"job_ids": ["nope"]}).status_code == 404


def test_repeated_status_query_is_stable(client) -> None:
    waiting = create_job(URL, "cat-news")
    failed = create_job(URL, "cat-news")
    update_job_status(failed, JobStatus.ERROR, "Download failed: boom")

    def poll():
        body = client.post("/api/jobs/status", json={"job_ids": [waiting, failed, "nope"]}).json()
        for job in body["jobs"]:
            job.pop("time_ago")
        return body

    assert poll() == poll()


def test_unknown_job_is_404(client) -> None:
    assert client.get("/api/jobs/nope").status_code == 404
    assert client.delete("/api/jobs/nope").status_code == 404
    assert client.post("/api/jobs/nope/retry").status_code == 404


def test_delete_waiting_job(client) -> None:
    job_id = create_job(URL, "cat-news")

    assert client.delete(f"/api/jobs/{job_id}").json() == {"success": True}
    assert client.get(f"/api/jobs/{job_id}").status_code == 404


def test_delete_processing_job_is_refused(client) -> None:
    job_id = create_job(URL, "cat-news")
    claim_next_job()

    response = client.delete(f"/api/jobs/{job_id}")

    assert response.status_code == 400
    assert client.get(f"/api/jobs/{job_id}").json()["status"] == "downloading"


def test_retry(client, kicks) -> None:
    job_id = create_job(URL, "cat-news")
    assert client.post(f"/api/jobs/{job_id}/retry").status_code == 400

    update_job_status(job_id, JobStatus.ERROR, "boom")
    response = client.post(f"/api/jobs/{job_id}/retry")

    assert response.status_code == 200
    assert client.get(f"/api/jobs/{job_id}").json()["status"] == "waiting"
    assert kicks == [True]


def test_cleanup(client) -> None:
    done = create_job(URL, "cat-news")
    update_job_status(done, JobStatus.COMPLETED)
    create_job(URL, "cat-news")

    assert client.delete("/api/jobs/cleanup?status=bogus").status_code == 400
    assert client.delete("/api/jobs/cleanup").json() == {"deleted": 1}


def test_force_process_with_nothing_waiting(client) -> None:
    body = client.post("/api/jobs/process").json()
    assert body["started"] is False
    assert body["count"] == 0


def test_settings_round_trip_masks_secrets(client) -> None:
    response = client.put("/api/settings", json={"s3_bucket": "media", "s3_secret_key": "hunter2"})

    assert response.status_code == 200
    assert sorted(response.json()["updated"]) == ["s3_bucket", "s3_secret_key"]
    settings = client.get("/api/settings").json()["settings"]
    assert settings["s3_bucket"] == "media"
    assert settings["s3_secret_key"] != "hunter2"
    assert client.get("/api/config").json()["storage_configured"] is True


def test_invalid_cookies_are_rejected(client) -> None:
    response = client.put("/api/settings", json={"youtube_cookies": "not a cookie file"})
    assert response.status_code == 400
