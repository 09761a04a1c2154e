"""Custom exceptions for the face indexer."""

from __future__ import annotations


class FaceIndexerError(Exception):
    """Base exception for all face indexer errors."""

    status_code: int = 500


class ConfigurationError(FaceIndexerError):
    """Error raised for invalid configuration options."""


# Job controller preconditions. These reach the caller synchronously.


class GalleryNotFoundError(FaceIndexerError):
    """No gallery exists for the requested album code."""

    status_code = 404


class FeatureDisabledError(FaceIndexerError):
    """Face recognition is not enabled for the gallery."""

    status_code = 400


class EmptyGalleryError(FaceIndexerError):
    """The gallery has no photos to index."""

    status_code = 400


class JobAlreadyRunningError(FaceIndexerError):
    """An indexing job is already running for the gallery."""

    status_code = 409


class ServiceUnavailableError(FaceIndexerError):
    """The face service is not configured or cannot be reached."""

    status_code = 503


class CollectionCreateFailedError(FaceIndexerError):
    """The face collection could not be created or verified."""

    status_code = 502


# Raised inside a running job.


class FaceServiceError(FaceIndexerError):
    """A face service call failed."""

    def __init__(self, message: str, code: str = "") -> None:
        super().__init__(message)
        self.code = code


class CollectionNotFoundError(FaceServiceError):
    """The collection disappeared while the job was running."""


class FetchFailedError(FaceIndexerError):
    """A photo could not be downloaded after all retries."""


class ImageProcessingError(FaceIndexerError):
    """Error raised when decoding or re-encoding a photo fails."""


class PhotoSkipped(FaceIndexerError):
    """Base for business conditions that skip a photo without indexing it."""


class NoFaceDetectedError(PhotoSkipped):
    """The photo contains no detectable face."""


class ImageTooLargeError(PhotoSkipped):
    """The photo is still over the size ceiling after maximum compression."""


class InvalidPhotoError(PhotoSkipped):
    """The photo record is malformed (for example it has no URL)."""
