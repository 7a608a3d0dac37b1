"""
TubeIngest - Application Constants

All shared constants in one place for easy tuning.
"""

import os
from pathlib import Path

VERSION = "1.2.0"

# Timeout values (in seconds)
TIMEOUT_YTDLP_FORMATS = 60       # Listing available formats (yt-dlp -F)
TIMEOUT_YTDLP_DOWNLOAD = 3600    # Default cap on a single merged download (0 = no cap)
TIMEOUT_S3_CONNECT = 10          # Object storage connect timeout
STALE_JOB_CHECK_INTERVAL = 120   # Check for orphaned jobs every 2 minutes
FORCE_PROCESS_WINDOW = 3600      # Only waiting jobs younger than this count for the force trigger
RECENT_JOBS_WINDOW = 24 * 3600   # "Recent" filter in status queries

# Stream selection - plain substring matches against yt-dlp -F lines
AUDIO_LANGUAGE_TAGS = ("[pt]", "[pt-BR]")
AUDIO_ONLY_MARKER = "audio only"
VIDEO_ONLY_MARKER = "video only"
PREFERRED_RESOLUTION = "1080p"
SUBTITLE_LANG = "pt"

# Object storage
STORAGE_KEY_PREFIX = "videos"
STORAGE_CACHE_CONTROL = "public, max-age=31536000"

# File handling
COOKIES_FILE = Path(os.getenv("COOKIES_FILE", "/data/cookies.txt"))  # yt-dlp cookies file path
YTDLP_LEFTOVER_SUFFIXES = (".part", ".ytdl")   # partial download, resume state
YTDLP_LEFTOVER_MARKERS = (".temp.", ".part-Frag")  # <title>.temp.mp4 while merging, fragment files

# YouTube player client override (empty = yt-dlp default / web client)
YTDLP_PLAYER_CLIENT = os.getenv("YTDLP_PLAYER_CLIENT", "")

# Job status vocabulary.
# In memory the pipeline distinguishes downloading/uploading; the jobs table
# only admits the STORED_* values (see jobs.to_stored_status).
STATUS_WAITING = "waiting"
STATUS_DOWNLOADING = "downloading"
STATUS_UPLOADING = "uploading"
STATUS_COMPLETED = "completed"
STATUS_ERROR = "error"

STORED_WAITING = "waiting"
STORED_PROCESSING = "processing"
STORED_COMPLETED = "completed"
STORED_ERROR = "error"
STORED_STATUSES = (STORED_WAITING, STORED_PROCESSING, STORED_COMPLETED, STORED_ERROR)

# Configuration from environment - structural paths
DB_PATH = Path(os.getenv("DB_PATH", "/data/tube_ingest.db"))
DOWNLOAD_DIR = Path(os.getenv("DOWNLOAD_DIR", "/data/downloads"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
