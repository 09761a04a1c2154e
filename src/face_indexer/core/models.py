"""Shared data models for the face indexer."""

import os
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from .logging_config import get_logger

MB = 1024 * 1024


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_album_code(album_code: str) -> str:
    """Album codes are case-insensitive keys."""
    return album_code.strip().lower()


def collection_id_for(album_code: str) -> str:
    """Face collection id for an album."""
    return f"collection-{normalize_album_code(album_code)}"


def external_id_for(photo_index: int) -> str:
    """External face-record id, mapping a search hit back to the photo position."""
    return f"photo-{photo_index}"


class IndexingStatusValue(str, Enum):
    """Lifecycle of a gallery's face index."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (IndexingStatusValue.COMPLETED, IndexingStatusValue.FAILED)


class IndexingConfig(BaseModel):
    """Configuration for indexing jobs."""

    aws_region: str = "us-east-1"
    gallery_table: str = "customer-galleries"
    batch_size: int = Field(default=3, ge=1)
    max_consecutive_errors: int = Field(default=3, ge=1)
    success_delay: float = 0.5
    skip_delay: float = 0.2
    batch_delay: float = 2.0
    fetch_timeout: float = 60.0
    fetch_attempts: int = Field(default=3, ge=1)
    fetch_backoff: float = 2.0
    max_image_bytes: int = 5 * MB
    max_faces: int = 10
    quality_filter: str = "AUTO"
    minutes_per_photo: float = 0.3
    user_agent: str = "face-indexer/0.1.0"
    debug: bool = False

    @classmethod
    def from_env(cls, **overrides) -> "IndexingConfig":
        """
        Build a config from environment variables.

        Environment Variables:
            AWS_REGION: Region for Rekognition and DynamoDB
            FACE_INDEXER_GALLERY_TABLE: DynamoDB table holding galleries
            FACE_INDEXER_FETCH_TIMEOUT: Per-download timeout in seconds
            FACE_INDEXER_USER_AGENT: User-Agent sent when fetching photos
        """
        values = {}
        if os.getenv("AWS_REGION"):
            values["aws_region"] = os.environ["AWS_REGION"]
        if os.getenv("FACE_INDEXER_GALLERY_TABLE"):
            values["gallery_table"] = os.environ["FACE_INDEXER_GALLERY_TABLE"]
        if os.getenv("FACE_INDEXER_FETCH_TIMEOUT"):
            values["fetch_timeout"] = float(os.environ["FACE_INDEXER_FETCH_TIMEOUT"])
        if os.getenv("FACE_INDEXER_USER_AGENT"):
            values["user_agent"] = os.environ["FACE_INDEXER_USER_AGENT"]
        values.update(overrides)
        return cls(**values)


class Photo(BaseModel):
    """A photo in a gallery.

    Malformed url or label values load as empty strings so one bad record
    never hides the rest of the gallery; a photo without a url is skipped
    when indexed.
    """

    url: str = ""
    label: str = ""

    @field_validator("url", "label", mode="before")
    @classmethod
    def _blank_invalid(cls, value: Any, info: ValidationInfo) -> str:
        if isinstance(value, str):
            return value
        get_logger("face-indexer.models").warning(
            f"Ignoring malformed photo {info.field_name}: {value!r}"
        )
        return ""


class IndexingStatus(BaseModel):
    """Persisted progress record of a gallery's face index."""

    model_config = ConfigDict(populate_by_name=True)

    status: IndexingStatusValue = IndexingStatusValue.NOT_STARTED
    total_photos: int = Field(default=0, ge=0, alias="totalPhotos")
    indexed_photos: int = Field(default=0, ge=0, alias="indexedPhotos")
    is_ready_to_send: bool = Field(default=False, alias="isReadyToSend")
    estimated_time_remaining: int = Field(
        default=0, ge=0, alias="estimatedTimeRemaining"
    )
    last_updated: datetime = Field(default_factory=utcnow, alias="lastUpdated")
    next_photo_index: int = Field(default=0, ge=0, alias="nextPhotoIndex")
    consecutive_errors: int = Field(default=0, ge=0, alias="consecutiveErrors")
    faces_indexed: int = Field(default=0, ge=0, alias="facesIndexed")
    error_message: str = Field(default="", alias="errorMessage")

    @classmethod
    def record_fields(cls, fields: Dict[str, Any]) -> Dict[str, Any]:
        """
        Convert a partial update keyed by field name into stored form.

        Keys become the camelCase aliases, enums their values and
        datetimes ISO-8601 strings.
        """
        record: Dict[str, Any] = {}
        for name, value in fields.items():
            if name not in cls.model_fields:
                raise KeyError(f"Unknown indexing status field: {name}")
            alias = cls.model_fields[name].alias or name
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, datetime):
                value = value.isoformat()
            record[alias] = value
        return record

    @property
    def progress(self) -> int:
        """Percentage of photos processed."""
        if self.total_photos <= 0:
            return 0
        return round(self.indexed_photos / self.total_photos * 100)


class Gallery(BaseModel):
    """The parts of a customer gallery the pipeline reads."""

    model_config = ConfigDict(populate_by_name=True)

    album_code: str = Field(alias="albumCode")
    photos: List[Photo] = Field(default_factory=list)
    face_recognition_enabled: bool = Field(
        default=False, alias="faceRecognitionEnabled"
    )
    indexing_status: IndexingStatus = Field(
        default_factory=IndexingStatus, alias="indexingStatus"
    )

    @field_validator("photos", mode="before")
    @classmethod
    def _keep_malformed_photo_positions(cls, value: Any) -> Any:
        # Photo ids are positional, so a broken entry becomes an empty photo
        if not isinstance(value, list):
            return value
        photos = []
        for i, item in enumerate(value):
            if isinstance(item, (dict, Photo)):
                photos.append(item)
            else:
                get_logger("face-indexer.models").warning(
                    f"Ignoring malformed photo record at position {i}: {item!r}"
                )
                photos.append({})
        return photos


class PhotoOutcome(str, Enum):
    """What happened to a single photo."""

    INDEXED = "indexed"
    SKIPPED = "skipped"
    FAILED = "failed"


class PhotoResult(BaseModel):
    """Result of processing a single photo."""

    index: int
    label: str = ""
    outcome: PhotoOutcome = PhotoOutcome.FAILED
    faces_indexed: int = 0
    error: str = ""
    processing_time: float = 0.0


class StartIndexingResult(BaseModel):
    """Returned to the trigger once a job has been handed off."""

    album_code: str
    collection_id: str
    total_photos: int
    start_index: int = 0
    estimated_time_remaining: int = 0


class IndexingJob(BaseModel):
    """In-memory description of one run over a gallery."""

    album_code: str
    collection_id: str
    photos: List[Photo]
    start_index: int = 0
    faces_indexed: int = 0
    purge_existing: bool = True
    correlation_id: Optional[str] = None

    @property
    def total_photos(self) -> int:
        return len(self.photos)
