"""
TubeIngest - Common Utilities

YouTube URL parsing, slugs, and elapsed-time text.
"""

import re
from datetime import datetime, timezone
from urllib.parse import urlparse, parse_qs


def is_valid_youtube_id(video_id: str) -> bool:
    """Basic validation for YouTube video IDs."""
    return bool(re.match(r'^[A-Za-z0-9_-]{11}$', video_id or ""))


def is_http_url(url: str) -> bool:
    parsed = urlparse((url or "").strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def extract_youtube_id(url: str) -> str | None:
    """Pull the video ID out of the usual YouTube URL shapes.

    Handles watch?v=, youtu.be/<id>, /shorts/<id>, /embed/<id> and /live/<id>.
    Returns None for anything else (yt-dlp may still understand it).
    """
    parsed = urlparse((url or "").strip())
    host = (parsed.hostname or "").lower()
    candidate = None
    if host.endswith("youtu.be"):
        candidate = parsed.path.lstrip("/").split("/")[0]
    elif host.endswith("youtube.com"):
        if parsed.path == "/watch":
            candidate = (parse_qs(parsed.query).get("v") or [None])[0]
        else:
            match = re.match(r'^/(?:shorts|embed|live|v)/([^/?#]+)', parsed.path)
            if match:
                candidate = match.group(1)
    if candidate and is_valid_youtube_id(candidate):
        return candidate
    return None


def youtube_thumbnail_url(url: str) -> str | None:
    video_id = extract_youtube_id(url)
    if not video_id:
        return None
    return f"https://i.ytimg.com/vi/{video_id}/hqdefault.jpg"


def slugify(title: str) -> str:
    """'Reportagem: Eleições 2024!' -> 'reportagem-elei-es-2024'"""
    slug = re.sub(r'[^a-z0-9]+', '-', (title or "").lower())
    return slug.strip('-')


def ensure_utc_suffix(timestamp: str | None) -> str | None:
    """Ensure timestamp has UTC indicator for proper JS parsing.

    SQLite's CURRENT_TIMESTAMP and datetime('now') return UTC but without
    timezone suffix. JavaScript's Date() treats such strings as local time.
    Appending 'Z' tells JS to interpret as UTC.
    """
    if not timestamp:
        return timestamp
    # Already has timezone info
    if timestamp.endswith('Z') or '+' in timestamp[-6:]:
        return timestamp
    # SQLite format uses space, ISO uses T
    return timestamp.replace(' ', 'T') + 'Z'


def parse_db_timestamp(timestamp: str | None) -> datetime | None:
    """Parse a SQLite UTC timestamp ('YYYY-MM-DD HH:MM:SS') into an aware datetime."""
    if not timestamp:
        return None
    try:
        parsed = datetime.fromisoformat(timestamp.replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_time_ago(elapsed_seconds: float) -> str:
    """Coarse elapsed-time text: '42 seconds', '5 minutes', '3 hours', '2 days'."""
    seconds = max(0, int(elapsed_seconds))
    if seconds < 60:
        return f"{seconds} seconds"
    if seconds < 3600:
        return f"{seconds // 60} minutes"
    if seconds < 86400:
        return f"{seconds // 3600} hours"
    return f"{seconds // 86400} days"
