"""
TubeIngest - Video Metadata Persistence

Writes the record of an ingested video inside a single transaction.
"""

import asyncio
import logging
import sqlite3
import uuid

from db import db_conn
from errors import PersistenceFailure
from utils import slugify

logger = logging.getLogger(__name__)


def _insert_video(title: str, source_url: str, storage_url: str, category_id: str,
                  thumbnail_url: str | None) -> str:
    video_id = uuid.uuid4().hex
    with db_conn() as conn:
        try:
            conn.execute("BEGIN")
            conn.execute(
                """INSERT INTO videos (id, title, slug, source_url, storage_url, thumbnail_url, category_id, origin)
                   VALUES (?, ?, ?, ?, ?, ?, ?, 'youtube')""",
                (video_id, title, slugify(title), source_url, storage_url, thumbnail_url, category_id)
            )
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise PersistenceFailure(f"Could not save video (category {category_id}): {e}")
        except sqlite3.Error as e:
            conn.rollback()
            raise PersistenceFailure(f"Could not save video: {e}")
    return video_id


async def save_video_record(title: str, source_url: str, storage_url: str, category_id: str,
                            thumbnail_url: str | None = None) -> str:
    """Insert one videos row atomically and return its id.

    Either the whole row is committed or nothing is; a bad category_id
    (foreign key) surfaces as PersistenceFailure.
    """
    if not (title and source_url and storage_url and category_id):
        raise PersistenceFailure("Incomplete data for saving the video record")
    video_id = await asyncio.to_thread(
        _insert_video, title, source_url, storage_url, category_id, thumbnail_url
    )
    logger.info("Saved video record %s (%s)", video_id, title)
    return video_id
