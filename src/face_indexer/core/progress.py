"""Progress, ETA and terminal status of an indexing job."""

import math
import time
from typing import Any, Callable, Dict, Optional

from .models import (
    IndexingConfig,
    IndexingStatus,
    IndexingStatusValue,
    PhotoResult,
    utcnow,
)
from .protocols import GalleryStoreProtocol


class ProgressTracker:
    """Computes and persists the status record of one gallery during a run.

    The tracker is the single writer of the record while its job runs. It
    only ever sends set-style partial updates and never reads the record
    back. ``indexed_photos`` counts processed photos (indexed or skipped)
    and only moves forward.
    """

    def __init__(
        self,
        store: GalleryStoreProtocol,
        album_code: str,
        total_photos: int,
        config: Optional[IndexingConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._config = config or IndexingConfig()
        self._clock = clock
        self.album_code = album_code
        self.total_photos = total_photos
        self.indexed_photos = 0
        self.faces_indexed = 0
        self.next_photo_index = 0
        self.consecutive_errors = 0
        self.status = IndexingStatusValue.NOT_STARTED
        self._processed_this_run = 0
        self._run_started: Optional[float] = None

    def estimate_minutes(self, remaining: int) -> int:
        """
        Minutes left for ``remaining`` photos.

        A fixed per-photo budget is used until a full batch has been timed,
        then the measured average of this run (delays included).
        """
        if remaining <= 0:
            return 0
        if (
            self._run_started is not None
            and self._processed_this_run >= self._config.batch_size
        ):
            elapsed = self._clock() - self._run_started
            seconds_per_photo = elapsed / self._processed_this_run
            return math.ceil(round(remaining * seconds_per_photo / 60, 6))
        # Drop float noise before rounding up
        return math.ceil(round(remaining * self._config.minutes_per_photo, 6))

    @property
    def is_ready_to_send(self) -> bool:
        return (
            self.status == IndexingStatusValue.COMPLETED
            and self.indexed_photos > 0
            and self.faces_indexed > 0
        )

    def snapshot(self) -> IndexingStatus:
        """The status as this tracker last wrote it."""
        return IndexingStatus(
            status=self.status,
            total_photos=self.total_photos,
            indexed_photos=self.indexed_photos,
            is_ready_to_send=self.is_ready_to_send,
            estimated_time_remaining=(
                0
                if self.status.is_terminal
                else self.estimate_minutes(self.total_photos - self.indexed_photos)
            ),
            next_photo_index=self.next_photo_index,
            consecutive_errors=self.consecutive_errors,
            faces_indexed=self.faces_indexed,
        )

    async def _write(self, fields: Dict[str, Any]) -> None:
        fields["last_updated"] = utcnow()
        await self._store.update_indexing_status(self.album_code, fields)

    async def mark_started(self, start_index: int = 0, faces_indexed: int = 0) -> int:
        """
        Write the in_progress record for a new run.

        Args:
            start_index: Photos before this position count as already processed
            faces_indexed: Faces carried over from the resumed run

        Returns:
            Initial ETA in minutes
        """
        start_index = max(0, min(start_index, self.total_photos))
        self.status = IndexingStatusValue.IN_PROGRESS
        self.indexed_photos = start_index
        self.next_photo_index = start_index
        self.faces_indexed = faces_indexed
        self.consecutive_errors = 0
        self._processed_this_run = 0
        self._run_started = self._clock()
        eta = self.estimate_minutes(self.total_photos - start_index)
        await self._write(
            {
                "status": IndexingStatusValue.IN_PROGRESS,
                "total_photos": self.total_photos,
                "indexed_photos": self.indexed_photos,
                "is_ready_to_send": False,
                "estimated_time_remaining": eta,
                "next_photo_index": self.next_photo_index,
                "consecutive_errors": 0,
                "faces_indexed": self.faces_indexed,
                "error_message": "",
            }
        )
        return eta

    async def record_photo(self, result: PhotoResult, consecutive_errors: int) -> None:
        """Persist progress after one photo, whatever its outcome."""
        self._processed_this_run += 1
        self.indexed_photos = min(self.indexed_photos + 1, self.total_photos)
        self.next_photo_index = max(self.next_photo_index, result.index + 1)
        self.faces_indexed += result.faces_indexed
        self.consecutive_errors = consecutive_errors
        await self._write(
            {
                "indexed_photos": self.indexed_photos,
                "estimated_time_remaining": self.estimate_minutes(
                    self.total_photos - self.indexed_photos
                ),
                "next_photo_index": self.next_photo_index,
                "consecutive_errors": consecutive_errors,
                "faces_indexed": self.faces_indexed,
            }
        )

    async def mark_completed(self) -> None:
        self.status = IndexingStatusValue.COMPLETED
        await self._write(
            {
                "status": IndexingStatusValue.COMPLETED,
                "indexed_photos": self.indexed_photos,
                "is_ready_to_send": self.is_ready_to_send,
                "estimated_time_remaining": 0,
                "faces_indexed": self.faces_indexed,
                "error_message": "",
            }
        )

    async def mark_failed(self, reason: str) -> None:
        """Write the failed state; indexed_photos keeps its last value."""
        self.status = IndexingStatusValue.FAILED
        await self._write(
            {
                "status": IndexingStatusValue.FAILED,
                "is_ready_to_send": False,
                "estimated_time_remaining": 0,
                "error_message": reason,
            }
        )
