"""
TubeIngest - YouTube / yt-dlp Operations

Cookie handling, format probing, and stream selection.
"""

import asyncio
import logging
import subprocess
from dataclasses import dataclass

from constants import (
    AUDIO_LANGUAGE_TAGS, AUDIO_ONLY_MARKER, VIDEO_ONLY_MARKER, PREFERRED_RESOLUTION,
    COOKIES_FILE, TIMEOUT_YTDLP_FORMATS, YTDLP_PLAYER_CLIENT,
)
from errors import ExternalToolFailure
from settings import get_setting

logger = logging.getLogger(__name__)


def _has_valid_cookie_entries(cookies_text: str) -> bool:
    """Check for at least one Netscape-format cookie entry (tabs-separated)."""
    for raw_line in cookies_text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        # Netscape format can prefix HttpOnly entries with "#HttpOnly_"
        if line.startswith("#HttpOnly_"):
            if line.count("\t") >= 6:
                return True
            continue
        # Skip comments
        if line.startswith("#"):
            continue
        if line.count("\t") >= 6:
            return True
    return False


def _sync_cookies_file():
    """Write YouTube cookies from settings to the cookies file on disk.
    Called when settings are saved and at startup."""
    cookies = get_setting("youtube_cookies", "")
    if cookies.strip():
        if not _has_valid_cookie_entries(cookies):
            # Avoid writing invalid cookie data that can break yt-dlp
            if COOKIES_FILE.exists():
                COOKIES_FILE.unlink()
            return
        COOKIES_FILE.parent.mkdir(parents=True, exist_ok=True)
        COOKIES_FILE.write_text(cookies)
    elif COOKIES_FILE.exists():
        COOKIES_FILE.unlink()


def _ytdlp_base_args():
    """Return common yt-dlp arguments (cookies, optional player-client override).
    These should be prepended after 'yt-dlp' in every command."""
    args = []
    if COOKIES_FILE.exists() and COOKIES_FILE.stat().st_size > 0:
        args.extend(["--cookies", str(COOKIES_FILE)])
    if YTDLP_PLAYER_CLIENT:
        args.extend(["--extractor-args", f"youtube:player_client={YTDLP_PLAYER_CLIENT}"])
    return args


def _is_ytdlp_403(stderr: str) -> bool:
    """Check if yt-dlp stderr indicates a YouTube 403/bot-block error."""
    lower = (stderr or "").lower()
    return "403" in lower or "forbidden" in lower or "sign in to confirm" in lower


def _tool_error_message(prefix: str, stderr: str) -> str:
    stderr = (stderr or "").strip()
    if _is_ytdlp_403(stderr):
        return f"{prefix}: YouTube blocked this request (403). Add browser cookies in Settings to authenticate."
    return f"{prefix}: {stderr}" if stderr else prefix


# ---------------------------------------------------------------------------
# Format probing
# ---------------------------------------------------------------------------

def _run_format_listing(url: str) -> str:
    cmd = [
        "yt-dlp",
        *_ytdlp_base_args(),
        "-F",
        "--no-warnings",
        url,
    ]
    logger.debug("Listing formats: %s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=TIMEOUT_YTDLP_FORMATS)
    except subprocess.TimeoutExpired:
        raise ExternalToolFailure(f"Timed out listing formats for {url}")
    except OSError as e:
        raise ExternalToolFailure(f"Could not run yt-dlp: {e}")

    if result.returncode != 0:
        raise ExternalToolFailure(_tool_error_message("Failed to list formats", result.stderr))
    return result.stdout


async def probe_formats(url: str) -> str:
    """Return the raw `yt-dlp -F` listing for url. Single attempt, no retries."""
    return await asyncio.to_thread(_run_format_listing, url)


# ---------------------------------------------------------------------------
# Stream selection
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StreamSelection:
    audio_id: str | None
    video_id: str | None

    @property
    def is_complete(self) -> bool:
        return bool(self.audio_id and self.video_id)


def _format_id(line: str) -> str | None:
    """Format id is the first space-delimited token of a listing line."""
    token = line.strip().split(" ")[0]
    return token or None


def find_portuguese_audio_id(formats: str) -> str | None:
    """First audio-only stream tagged [pt] or [pt-BR]. No fallback language."""
    for line in formats.splitlines():
        if AUDIO_ONLY_MARKER in line and any(tag in line for tag in AUDIO_LANGUAGE_TAGS):
            return _format_id(line)
    return None


def find_best_video_id(formats: str) -> str | None:
    """First 1080p video-only stream, else the first video-only stream at any resolution."""
    lines = formats.splitlines()
    for line in lines:
        if PREFERRED_RESOLUTION in line and VIDEO_ONLY_MARKER in line:
            return _format_id(line)
    for line in lines:
        if VIDEO_ONLY_MARKER in line:
            return _format_id(line)
    return None


def select_streams(formats: str) -> StreamSelection:
    return StreamSelection(
        audio_id=find_portuguese_audio_id(formats),
        video_id=find_best_video_id(formats),
    )
