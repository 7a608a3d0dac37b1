"""
TubeIngest - Error Types

Every failure the ingestion pipeline can raise. The coordinator catches
IngestError (and anything else) at the job boundary and records the message
on the job row; routes translate the lookup/guard errors into HTTP codes.
"""


class IngestError(Exception):
    """Base class for ingestion failures."""


class ExternalToolFailure(IngestError):
    """yt-dlp exited non-zero, timed out, or could not be started."""


class DownloadFailure(ExternalToolFailure):
    """The merged download failed or its output file is missing."""


class SelectionFailure(IngestError):
    """No usable audio or video stream in the format listing.

    Not retryable: the source simply doesn't carry the stream we need.
    """


class StorageUnavailable(IngestError):
    """Bucket missing or unreachable."""


class UploadFailure(IngestError):
    pass


class PersistenceFailure(IngestError):
    pass


class NotFoundFailure(IngestError):
    pass


class JobBusy(IngestError):
    """Raised when a destructive action targets a job that is being processed."""
