import os
import sys
import tempfile
from pathlib import Path

import pytest

# Paths are read from the environment at import time, so point them at a
# scratch directory before any project module is imported.
_SCRATCH = Path(tempfile.mkdtemp(prefix="tube-ingest-tests-"))
os.environ["DB_PATH"] = str(_SCRATCH / "tube_ingest.db")
os.environ["DOWNLOAD_DIR"] = str(_SCRATCH / "downloads")
os.environ["COOKIES_FILE"] = str(_SCRATCH / "cookies.txt")
for _key in ("S3_ENDPOINT", "S3_REGION", "S3_BUCKET", "S3_ACCESS_KEY", "S3_SECRET_KEY",
             "S3_PUBLIC_URL", "YOUTUBE_COOKIES", "DOWNLOAD_TIMEOUT", "YTDLP_PLAYER_CLIENT"):
    os.environ.pop(_key, None)

# Ensure tests can import project modules regardless of how pytest is invoked.
ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)
if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

from db import db_conn, init_db  # noqa: E402


@pytest.fixture(autouse=True)
def clean_db():
    init_db()
    with db_conn() as conn:
        conn.execute("DELETE FROM videos")
        conn.execute("DELETE FROM jobs")
        conn.execute("DELETE FROM categories")
        conn.execute("DELETE FROM settings")
        conn.commit()
    yield


@pytest.fixture
def category():
    with db_conn() as conn:
        conn.execute("INSERT INTO categories (id, name) VALUES (?, ?)", ("cat-news", "News"))
        conn.commit()
    return "cat-news"
