"""Sequential batch orchestration of a gallery indexing job."""

import asyncio
import time
import uuid
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from .error_handling import BatchOperationContextManager, ErrorDisposition, classify_error
from .exceptions import (
    CollectionNotFoundError,
    FaceServiceError,
    ImageTooLargeError,
    InvalidPhotoError,
    NoFaceDetectedError,
)
from .image_utils import transform_for_face_service
from .logging_config import get_job_logger
from .models import (
    IndexingConfig,
    IndexingJob,
    IndexingStatusValue,
    Photo,
    PhotoOutcome,
    PhotoResult,
    external_id_for,
)
from .observability import LogContext, MetricsCollector, StructuredLogger
from .progress import ProgressTracker
from .protocols import FaceServiceProtocol, LoggerProtocol, PhotoFetcherProtocol

STOPPED_MESSAGE = "Indexing was stopped by user"

Batch = List[Tuple[int, Photo]]


def plan_batches(photos: List[Photo], batch_size: int, start_index: int = 0) -> List[Batch]:
    """
    Split photos into consecutive batches, keeping each photo's gallery position.

    Args:
        photos: Gallery photos in order
        batch_size: Photos per batch
        start_index: First photo to include (resume cursor)

    Returns:
        List of batches of (index, photo) pairs
    """
    indexed = list(enumerate(photos))[start_index:]
    return [indexed[i : i + batch_size] for i in range(0, len(indexed), batch_size)]


async def faces_by_external_id(
    face_service: FaceServiceProtocol, collection_id: str
) -> Dict[str, List[str]]:
    """Face ids already stored in a collection, grouped by external id."""
    grouped: Dict[str, List[str]] = {}
    for face in await face_service.list_faces(collection_id):
        external_id = face.get("ExternalImageId")
        if external_id and face.get("FaceId"):
            grouped.setdefault(external_id, []).append(face["FaceId"])
    return grouped


class BatchOrchestrator:
    """Drives fetch, transform, detect and index for every photo of a job.

    Photos are processed strictly one after another in gallery order.
    Per-photo errors never escape ``run``: each is classified into a skip,
    a failure counted towards the consecutive error threshold, or a fatal
    error that aborts the job.
    """

    def __init__(
        self,
        face_service: FaceServiceProtocol,
        fetcher: PhotoFetcherProtocol,
        config: Optional[IndexingConfig] = None,
        logger: Optional[LoggerProtocol] = None,
        metrics_collector: Optional[MetricsCollector] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._face_service = face_service
        self._fetcher = fetcher
        self._config = config or IndexingConfig()
        self._logger = logger or StructuredLogger("face-indexer.orchestrator")
        self._metrics = metrics_collector or MetricsCollector()
        self._sleep = sleep

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    async def run(
        self,
        job: IndexingJob,
        tracker: ProgressTracker,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> IndexingStatusValue:
        """
        Index every photo of the job and write the terminal status.

        Args:
            job: The photos, collection and resume cursor
            tracker: Progress tracker already marked as started
            cancel_event: Set to stop the job before its next photo

        Returns:
            COMPLETED or FAILED
        """
        log_context = LogContext(
            correlation_id=job.correlation_id or str(uuid.uuid4()),
            operation="index_gallery",
            component="batch_orchestrator",
            album_code=job.album_code,
        )
        batches = plan_batches(job.photos, self._config.batch_size, job.start_index)
        self._logger.info(
            f"Starting indexing of {job.total_photos} photos in {len(batches)} batches",
            log_context,
            collection_id=job.collection_id,
            start_index=job.start_index,
        )

        try:
            existing_faces = await self._load_existing_faces(job, log_context)
        except CollectionNotFoundError as e:
            await tracker.mark_failed(f"Collection {job.collection_id} not found: {e}")
            return IndexingStatusValue.FAILED

        consecutive_errors = 0
        batch_manager = BatchOperationContextManager(
            operation_name=f"Face indexing for {job.album_code}",
            logger=get_job_logger(job.album_code),
        )
        try:
            with batch_manager:
                for batch_number, batch in enumerate(batches, start=1):
                    batch_context = log_context.with_metadata(
                        batch=f"{batch_number}/{len(batches)}"
                    )
                    self._logger.debug(
                        f"Processing batch with {len(batch)} photos", batch_context
                    )

                    for index, photo in batch:
                        if cancel_event is not None and cancel_event.is_set():
                            return await self._stop(tracker, batch_context)

                        result, disposition = await self.process_photo(
                            job, index, photo, existing_faces, batch_context
                        )

                        if disposition is ErrorDisposition.FATAL:
                            self._logger.error(
                                f"Aborting job: {result.error}", batch_context
                            )
                            await tracker.mark_failed(result.error)
                            return IndexingStatusValue.FAILED

                        if result.outcome is PhotoOutcome.FAILED:
                            consecutive_errors += 1
                            batch_manager.add_error(
                                result.error, item_identifier=external_id_for(index)
                            )
                        else:
                            consecutive_errors = 0

                        await tracker.record_photo(result, consecutive_errors)

                        if consecutive_errors >= self._config.max_consecutive_errors:
                            reason = (
                                f"Aborted after {consecutive_errors} consecutive "
                                f"failures: {result.error}"
                            )
                            self._logger.error(reason, batch_context)
                            await tracker.mark_failed(reason)
                            return IndexingStatusValue.FAILED

                        await self._pause(
                            self._config.success_delay
                            if result.outcome is PhotoOutcome.INDEXED
                            else self._config.skip_delay,
                            cancel_event,
                        )

                    if batch_number < len(batches):
                        await self._pause(self._config.batch_delay, cancel_event)

                # A stop during the last pause still wins over completion
                if cancel_event is not None and cancel_event.is_set():
                    return await self._stop(tracker, log_context)

        except asyncio.CancelledError:
            await asyncio.shield(tracker.mark_failed(STOPPED_MESSAGE))
            raise

        await tracker.mark_completed()
        self._logger.info(
            "Indexing completed",
            log_context,
            indexed_photos=tracker.indexed_photos,
            faces_indexed=tracker.faces_indexed,
            **self._metrics.get_summary("process_photo"),
        )
        return IndexingStatusValue.COMPLETED

    async def _stop(
        self, tracker: ProgressTracker, log_context: LogContext
    ) -> IndexingStatusValue:
        self._logger.warning("Stop requested", log_context)
        await tracker.mark_failed(STOPPED_MESSAGE)
        return IndexingStatusValue.FAILED

    async def _pause(self, delay: float, cancel_event: Optional[asyncio.Event]) -> None:
        """Sleep for ``delay`` seconds, waking early when a stop is requested."""
        if cancel_event is None:
            await self._sleep(delay)
            return
        sleeper = asyncio.ensure_future(self._sleep(delay))
        stopper = asyncio.ensure_future(cancel_event.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            stopper.cancel()
        if sleeper.done() and not sleeper.cancelled():
            sleeper.result()

    async def _load_existing_faces(
        self, job: IndexingJob, log_context: LogContext
    ) -> Dict[str, List[str]]:
        if not job.purge_existing:
            return {}
        try:
            return await faces_by_external_id(self._face_service, job.collection_id)
        except CollectionNotFoundError:
            raise
        except FaceServiceError as e:
            # Without the listing, re-indexed photos may end up with duplicate faces
            self._logger.warning(f"Could not list existing faces: {e}", log_context)
            return {}

    async def process_photo(
        self,
        job: IndexingJob,
        index: int,
        photo: Photo,
        existing_faces: Dict[str, List[str]],
        log_context: Optional[LogContext] = None,
    ) -> Tuple[PhotoResult, Optional[ErrorDisposition]]:
        """
        Fetch, transform, detect and index one photo.

        Returns:
            The photo result and, when it did not get indexed, how the error
            was classified
        """
        log_context = (log_context or LogContext()).with_metadata(
            photo=external_id_for(index), label=photo.label
        )
        start_time = time.monotonic()
        result = PhotoResult(index=index, label=photo.label)
        disposition: Optional[ErrorDisposition] = None

        try:
            if not photo.url:
                raise InvalidPhotoError(f"Photo {index} has no URL")

            raw_bytes = await self._fetcher.fetch(photo.url)
            transformed = await asyncio.to_thread(
                transform_for_face_service, raw_bytes, self._config.max_image_bytes
            )
            if not transformed.fits(self._config.max_image_bytes):
                raise ImageTooLargeError(
                    f"Image still {transformed.size} bytes after {transformed.stage} compression"
                )

            face_count = await self._face_service.detect_faces(transformed.data)
            if face_count == 0:
                raise NoFaceDetectedError("No face detected")

            external_id = external_id_for(index)
            stale_face_ids = existing_faces.pop(external_id, [])
            if stale_face_ids:
                await self._face_service.delete_faces(job.collection_id, stale_face_ids)

            face_records = await self._face_service.index_faces(
                job.collection_id,
                transformed.data,
                external_id,
                max_faces=self._config.max_faces,
                quality_filter=self._config.quality_filter,
            )
            if not face_records:
                raise NoFaceDetectedError("No face passed the quality filter")

            result.outcome = PhotoOutcome.INDEXED
            result.faces_indexed = len(face_records)
            self._logger.info(
                f"Indexed {len(face_records)} faces",
                log_context,
                detected=face_count,
                stage=transformed.stage,
            )

        except Exception as e:
            disposition = classify_error(e)
            result.error = str(e) or type(e).__name__
            if disposition is ErrorDisposition.SKIP:
                result.outcome = PhotoOutcome.SKIPPED
                self._logger.info(f"Skipped: {result.error}", log_context)
            else:
                result.outcome = PhotoOutcome.FAILED
                self._logger.error(
                    f"Processing failed due to {type(e).__name__}: {result.error}",
                    log_context,
                )

        result.processing_time = time.monotonic() - start_time
        self._metrics.record(
            "process_photo",
            start_time,
            success=result.outcome is PhotoOutcome.INDEXED,
            error_message=result.error or None,
            outcome=result.outcome.value,
        )
        return result, disposition
