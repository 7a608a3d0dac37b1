"""
TubeIngest - Download Processing

Merged video+audio download via yt-dlp and the per-job ingestion pipeline:
probe -> select -> download -> upload -> persist -> local cleanup.
"""

import asyncio
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable

from constants import SUBTITLE_LANG, YTDLP_LEFTOVER_MARKERS, YTDLP_LEFTOVER_SUFFIXES
from errors import DownloadFailure, SelectionFailure
from jobs import JobStatus
from metadata import save_video_record
from settings import get_download_dir, get_download_timeout
from storage import check_bucket_access, upload_to_storage
from utils import youtube_thumbnail_url
from youtube import _ytdlp_base_args, _tool_error_message, probe_formats, select_streams

logger = logging.getLogger(__name__)

OUTPUT_TEMPLATE = "%(title)s.%(ext)s"


@dataclass(frozen=True)
class IngestResult:
    title: str
    storage_url: str
    thumbnail_url: str | None
    video_id: str


def _build_ytdlp_download_cmd(url: str, video_id: str, audio_id: str, output_template: str) -> list[str]:
    """Build yt-dlp args for a merged video+audio download with embedded subtitles.

    --print after_move:filepath makes the final path the last line on stdout,
    after merging and subtitle embedding have renamed things.
    """
    return [
        "yt-dlp",
        *_ytdlp_base_args(),
        "-f", f"{video_id}+{audio_id}",
        "--write-sub",
        "--sub-lang", SUBTITLE_LANG,
        "--embed-subs",
        "-o", output_template,
        "--print", "after_move:filepath",
        "--no-warnings",
        url,
    ]


def _output_path_from_stdout(stdout: str) -> Path | None:
    lines = [line.strip() for line in (stdout or "").splitlines() if line.strip()]
    return Path(lines[-1]) if lines else None


def _is_ytdlp_leftover(name: str, stem: str | None = None) -> bool:
    if stem is not None and not name.startswith(f"{stem}."):
        return False
    return name.endswith(YTDLP_LEFTOVER_SUFFIXES) or any(marker in name for marker in YTDLP_LEFTOVER_MARKERS)


def _cleanup_temp_files(download_dir: Path, stem: str | None = None) -> int:
    """Remove yt-dlp .part/.ytdl/.temp.* leftovers, only those of `stem` when given. Returns count removed."""
    removed = 0
    if not download_dir.is_dir():
        return removed
    for leftover in download_dir.iterdir():
        if not leftover.is_file():
            continue
        if _is_ytdlp_leftover(leftover.name, stem):
            try:
                leftover.unlink()
                removed += 1
                logger.debug("Cleaned up temp file: %s", leftover.name)
            except OSError:
                pass
    return removed


def _run_download(cmd: list[str], download_dir: Path, timeout: int | None) -> Path:
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        _cleanup_temp_files(download_dir)
        raise DownloadFailure(f"Download timed out after {timeout} seconds")
    except OSError as e:
        raise DownloadFailure(f"Could not run yt-dlp: {e}")

    if result.returncode != 0:
        _cleanup_temp_files(download_dir)
        raise DownloadFailure(_tool_error_message("Download failed", result.stderr))

    if result.stderr and result.stderr.strip():
        logger.warning("yt-dlp stderr: %s", result.stderr.strip())

    file_path = _output_path_from_stdout(result.stdout)
    if file_path is None or not file_path.is_file():
        if file_path is not None:
            _cleanup_temp_files(download_dir, file_path.stem)
        seen_files = []
        try:
            seen_files = [p.name for p in download_dir.iterdir() if p.is_file()][:8]
        except OSError:
            pass
        raise DownloadFailure(
            f"Download completed but output file not found at '{file_path}'. "
            f"Found files: {', '.join(seen_files) if seen_files else 'none'}"
            + (f". yt-dlp stderr: {result.stderr.strip()}" if result.stderr and result.stderr.strip() else "")
        )
    return file_path


async def download_merged(url: str, video_id: str, audio_id: str, download_dir: Path | None = None) -> Path:
    """Download the chosen video and audio streams merged into one file; return its path."""
    download_dir = Path(download_dir or get_download_dir())
    download_dir.mkdir(parents=True, exist_ok=True)
    cmd = _build_ytdlp_download_cmd(url, video_id, audio_id, str(download_dir / OUTPUT_TEMPLATE))
    logger.info("Downloading %s (video %s + audio %s)", url, video_id, audio_id)
    logger.debug("Command: %s", " ".join(cmd))
    file_path = await asyncio.to_thread(_run_download, cmd, download_dir, get_download_timeout())
    logger.info("Downloaded file: %s", file_path)
    return file_path


def _remove_local_file(file_path: Path | None) -> None:
    if file_path is None:
        return
    try:
        file_path.unlink(missing_ok=True)
        logger.info("Removed local file %s", file_path)
    except OSError as e:
        logger.warning("Could not remove local file %s: %s", file_path, e)


StageCallback = Callable[[JobStatus], Awaitable[None]]


async def _no_stage(status: JobStatus) -> None:
    return None


async def process_ingestion(job: dict, on_stage: StageCallback = _no_stage) -> IngestResult:
    """Run one ingestion job end to end.

    The caller has already moved the job to downloading. on_stage is awaited
    with UPLOADING once the merged file is on disk. Any failure propagates
    to the caller; the local file is removed either way.
    """
    url = job["source_url"]
    category_id = job["category_id"]
    file_path = None

    try:
        # Fail fast before spending minutes on a download we can't store
        await check_bucket_access()

        logger.info("Listing formats for %s", url)
        formats = await probe_formats(url)

        selection = select_streams(formats)
        if not selection.is_complete:
            if not selection.audio_id:
                raise SelectionFailure("No Portuguese audio track found for this video")
            raise SelectionFailure("No suitable video-only stream found for this video")
        logger.info("Selected audio %s, video %s", selection.audio_id, selection.video_id)

        file_path = await download_merged(url, selection.video_id, selection.audio_id)

        await on_stage(JobStatus.UPLOADING)
        storage_url = await upload_to_storage(file_path)

        title = file_path.stem
        thumbnail_url = youtube_thumbnail_url(url)
        video_id = await save_video_record(
            title=title,
            source_url=url,
            storage_url=storage_url,
            category_id=category_id,
            thumbnail_url=thumbnail_url,
        )
        return IngestResult(
            title=title,
            storage_url=storage_url,
            thumbnail_url=thumbnail_url,
            video_id=video_id,
        )
    finally:
        _remove_local_file(file_path)
