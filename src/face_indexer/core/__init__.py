"""Core components of the face indexer."""

from .controller import JobController, JobHandle, JobRegistry
from .error_handling import (
    BatchOperationContextManager,
    ErrorDisposition,
    RetryPolicy,
    call_with_retry,
    classify_error,
    with_error_handling,
)
from .exceptions import (
    CollectionCreateFailedError,
    CollectionNotFoundError,
    ConfigurationError,
    EmptyGalleryError,
    FaceIndexerError,
    FaceServiceError,
    FeatureDisabledError,
    FetchFailedError,
    GalleryNotFoundError,
    ImageProcessingError,
    ImageTooLargeError,
    InvalidPhotoError,
    JobAlreadyRunningError,
    NoFaceDetectedError,
    PhotoSkipped,
    ServiceUnavailableError,
)
from .image_utils import TransformResult, select_compression_tier, transform_for_face_service
from .logging_config import configure_logging, get_job_logger, get_logger
from .models import (
    Gallery,
    IndexingConfig,
    IndexingJob,
    IndexingStatus,
    IndexingStatusValue,
    Photo,
    PhotoOutcome,
    PhotoResult,
    StartIndexingResult,
    collection_id_for,
    external_id_for,
)
from .orchestrator import BatchOrchestrator
from .progress import ProgressTracker

__all__ = [
    "IndexingConfig",
    "Gallery",
    "Photo",
    "IndexingStatus",
    "IndexingStatusValue",
    "IndexingJob",
    "PhotoOutcome",
    "PhotoResult",
    "StartIndexingResult",
    "collection_id_for",
    "external_id_for",
    "TransformResult",
    "select_compression_tier",
    "transform_for_face_service",
    "configure_logging",
    "get_logger",
    "get_job_logger",
    "BatchOperationContextManager",
    "ErrorDisposition",
    "RetryPolicy",
    "call_with_retry",
    "classify_error",
    "with_error_handling",
    "FaceIndexerError",
    "ConfigurationError",
    "GalleryNotFoundError",
    "FeatureDisabledError",
    "EmptyGalleryError",
    "JobAlreadyRunningError",
    "ServiceUnavailableError",
    "CollectionCreateFailedError",
    "FaceServiceError",
    "CollectionNotFoundError",
    "FetchFailedError",
    "ImageProcessingError",
    "PhotoSkipped",
    "NoFaceDetectedError",
    "ImageTooLargeError",
    "InvalidPhotoError",
    "BatchOrchestrator",
    "ProgressTracker",
    "JobController",
    "JobHandle",
    "JobRegistry",
]
