"""
TubeIngest - Settings Management

Environment variable > DB value > default hierarchy.
"""

import os
import sqlite3
from pathlib import Path

from constants import DOWNLOAD_DIR, TIMEOUT_YTDLP_DOWNLOAD
from db import db_conn


def get_setting(key: str, default: str = "") -> str:
    """Get a setting value. Environment variable takes precedence over DB value."""
    # Check environment variable first (uppercase, with underscores)
    env_key = key.upper().replace(".", "_")
    env_value = os.getenv(env_key)
    if env_value is not None:
        return env_value

    # Fall back to database
    try:
        with db_conn() as conn:
            cursor = conn.execute("SELECT value FROM settings WHERE key = ?", (key,))
            row = cursor.fetchone()
        if row and row[0] is not None:
            return row[0]
    except sqlite3.Error:
        pass  # Table not created yet - defaults apply

    return default


def get_setting_int(key: str, default: int = 0) -> int:
    """Get an integer setting value."""
    value = get_setting(key, str(default))
    try:
        return int(value)
    except (ValueError, TypeError):
        return default


def set_setting(key: str, value: str) -> None:
    """Set a setting value in the database."""
    with db_conn() as conn:
        conn.execute("""
            INSERT INTO settings (key, value, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(key) DO UPDATE SET value = ?, updated_at = CURRENT_TIMESTAMP
        """, (key, value, value))
        conn.commit()


# Define which settings are sensitive (should be masked in GET response)
SENSITIVE_SETTINGS = {"s3_secret_key", "youtube_cookies"}

# Define all configurable settings with their types and defaults
SETTINGS_SCHEMA = {
    # Downloads
    "download_dir": {"type": "str", "default": str(DOWNLOAD_DIR), "env": "DOWNLOAD_DIR"},
    "download_timeout": {"type": "int", "default": TIMEOUT_YTDLP_DOWNLOAD, "env": "DOWNLOAD_TIMEOUT"},
    # Object storage (S3 / MinIO)
    "s3_endpoint": {"type": "str", "default": "", "env": "S3_ENDPOINT"},
    "s3_region": {"type": "str", "default": "us-east-1", "env": "S3_REGION"},
    "s3_bucket": {"type": "str", "default": "", "env": "S3_BUCKET"},
    "s3_access_key": {"type": "str", "default": "", "env": "S3_ACCESS_KEY"},
    "s3_secret_key": {"type": "str", "default": "", "env": "S3_SECRET_KEY", "sensitive": True},
    "s3_public_url": {"type": "str", "default": "", "env": "S3_PUBLIC_URL"},
    # YouTube
    "youtube_cookies": {"type": "str", "default": "", "env": "YOUTUBE_COOKIES", "sensitive": True},
}


def _get_typed_setting(key: str):
    """Get a setting with proper type conversion based on schema."""
    schema = SETTINGS_SCHEMA.get(key, {"type": "str", "default": ""})
    default = schema["default"]
    if schema["type"] == "int":
        return get_setting_int(key, default)
    return get_setting(key, default)


def _is_env_override(key: str) -> bool:
    """Check if a setting is being overridden by an environment variable."""
    schema = SETTINGS_SCHEMA.get(key, {})
    env_key = schema.get("env", key.upper())
    return os.getenv(env_key) is not None


def get_download_dir() -> Path:
    """Local working directory for merged downloads. Read at runtime so changes apply to the next job."""
    value = get_setting("download_dir", str(DOWNLOAD_DIR)).strip()
    return Path(value) if value else DOWNLOAD_DIR


def get_download_timeout() -> int | None:
    """Download timeout in seconds, or None when disabled (0 or negative)."""
    timeout = get_setting_int("download_timeout", TIMEOUT_YTDLP_DOWNLOAD)
    return timeout if timeout > 0 else None
