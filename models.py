"""
TubeIngest - Pydantic Request Models
"""

from typing import Optional
from pydantic import BaseModel, Field


class EnqueueRequest(BaseModel):
    # Empty values reach the route, which answers 400
    url: str = Field("", max_length=2048)
    category_id: str = ""

class StatusQueryRequest(BaseModel):
    job_ids: list[str] = Field(default_factory=list)

class SettingsUpdate(BaseModel):
    """Settings that can be updated via the API"""
    # Downloads
    download_dir: Optional[str] = None
    download_timeout: Optional[int] = None
    # Object storage
    s3_endpoint: Optional[str] = None
    s3_region: Optional[str] = None
    s3_bucket: Optional[str] = None
    s3_access_key: Optional[str] = None
    s3_secret_key: Optional[str] = None
    s3_public_url: Optional[str] = None
    # YouTube
    youtube_cookies: Optional[str] = None
