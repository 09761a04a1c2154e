"""Job controller and per-gallery worker registry."""

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional, Set

from .exceptions import (
    CollectionCreateFailedError,
    EmptyGalleryError,
    FaceServiceError,
    FeatureDisabledError,
    GalleryNotFoundError,
    JobAlreadyRunningError,
)
from .logging_config import get_logger
from .models import (
    IndexingConfig,
    IndexingJob,
    IndexingStatus,
    IndexingStatusValue,
    StartIndexingResult,
    collection_id_for,
    normalize_album_code,
)
from .observability import LogContext, StructuredLogger
from .orchestrator import BatchOrchestrator
from .progress import ProgressTracker
from .protocols import (
    FaceServiceProtocol,
    GalleryStoreProtocol,
    LoggerProtocol,
    PhotoFetcherProtocol,
)

# Statuses a resumed run may continue from; anything else starts over
RESUMABLE_STATUSES = (IndexingStatusValue.IN_PROGRESS, IndexingStatusValue.FAILED)


@dataclass
class JobHandle:
    """A submitted job and the means to stop or await it."""

    job: IndexingJob
    tracker: ProgressTracker
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    finished: asyncio.Event = field(default_factory=asyncio.Event)
    result: Optional[IndexingStatusValue] = None

    @property
    def album_code(self) -> str:
        return self.job.album_code


JobRunner = Callable[[JobHandle], Awaitable[IndexingStatusValue]]


class JobRegistry:
    """Runs submitted jobs on one worker task per gallery.

    Jobs reach a gallery's worker through its queue. A worker drains its
    queue and exits; the next submission starts a new one. Different
    galleries run concurrently, while jobs of one gallery never overlap.
    """

    def __init__(self, runner: JobRunner):
        self._runner = runner
        self._queues: Dict[str, "asyncio.Queue[JobHandle]"] = {}
        self._workers: Dict[str, "asyncio.Task[None]"] = {}
        self._handles: Dict[str, JobHandle] = {}
        self._logger = get_logger("face-indexer.registry")

    def is_running(self, album_code: str) -> bool:
        return normalize_album_code(album_code) in self._handles

    def get_handle(self, album_code: str) -> Optional[JobHandle]:
        return self._handles.get(normalize_album_code(album_code))

    def submit(self, handle: JobHandle) -> JobHandle:
        album_code = handle.album_code
        if album_code in self._handles:
            raise JobAlreadyRunningError(f"Indexing already running for {album_code}")
        self._handles[album_code] = handle
        queue = self._queues.setdefault(album_code, asyncio.Queue())
        queue.put_nowait(handle)

        worker = self._workers.get(album_code)
        if worker is None or worker.done():
            worker = asyncio.create_task(
                self._work(album_code, queue), name=f"face-indexer-{album_code}"
            )
            worker.add_done_callback(self._on_worker_done)
            self._workers[album_code] = worker
        return handle

    async def _work(self, album_code: str, queue: "asyncio.Queue[JobHandle]") -> None:
        while not queue.empty():
            handle = queue.get_nowait()
            try:
                handle.result = await self._runner(handle)
            except Exception as e:
                self._logger.error(
                    f"Indexing job for {album_code} crashed: {e}", exc_info=True
                )
                handle.result = IndexingStatusValue.FAILED
                await handle.tracker.mark_failed(f"Indexing crashed: {e}")
            finally:
                queue.task_done()
                self._handles.pop(album_code, None)
                handle.finished.set()

    def _on_worker_done(self, task: "asyncio.Task[None]") -> None:
        if task.cancelled():
            self._logger.warning(f"Worker {task.get_name()} was cancelled")
        elif task.exception() is not None:
            self._logger.error(
                f"Worker {task.get_name()} died: {task.exception()}",
                exc_info=task.exception(),
            )

    def cancel(self, album_code: str) -> bool:
        """Ask the gallery's running job to stop before its next photo."""
        handle = self.get_handle(album_code)
        if handle is None:
            return False
        handle.cancel_event.set()
        return True

    async def wait(self, album_code: str) -> Optional[IndexingStatusValue]:
        """Wait for the gallery's current job and return its final status."""
        handle = self.get_handle(album_code)
        if handle is None:
            return None
        await handle.finished.wait()
        return handle.result

    async def shutdown(self) -> None:
        """Cancel every worker; interrupted jobs are marked failed."""
        workers = [w for w in self._workers.values() if not w.done()]
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self._workers.clear()


class JobController:
    """Validates and starts indexing jobs, and answers status queries."""

    def __init__(
        self,
        store: GalleryStoreProtocol,
        face_service: FaceServiceProtocol,
        fetcher: PhotoFetcherProtocol,
        config: Optional[IndexingConfig] = None,
        orchestrator: Optional[BatchOrchestrator] = None,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._store = store
        self._face_service = face_service
        self._config = config or IndexingConfig()
        self._orchestrator = orchestrator or BatchOrchestrator(
            face_service, fetcher, self._config
        )
        self._logger = logger or StructuredLogger("face-indexer.controller")
        self._registry = JobRegistry(self._run_job)
        self._starting: Set[str] = set()

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    async def _run_job(self, handle: JobHandle) -> IndexingStatusValue:
        return await self._orchestrator.run(
            handle.job, handle.tracker, handle.cancel_event
        )

    async def start_indexing(
        self, album_code: str, resume: bool = False
    ) -> StartIndexingResult:
        """
        Validate the gallery, ensure its collection and hand off the job.

        Returns as soon as the job is queued; the job itself runs on the
        gallery's worker.

        Args:
            album_code: Gallery to index (case-insensitive)
            resume: Continue from the persisted cursor of an interrupted run

        Raises:
            GalleryNotFoundError: No gallery for the album code
            FeatureDisabledError: Face recognition is off for the gallery
            EmptyGalleryError: The gallery has no photos
            JobAlreadyRunningError: A job is already running for the gallery
            ServiceUnavailableError: The face service cannot be used
            CollectionCreateFailedError: The collection could not be ensured
        """
        album_code = normalize_album_code(album_code)
        correlation_id = str(uuid.uuid4())
        context = LogContext(
            correlation_id=correlation_id,
            operation="start_indexing",
            component="job_controller",
            album_code=album_code,
        )

        gallery = await self._store.find_gallery(album_code)
        if gallery is None:
            raise GalleryNotFoundError(f"Gallery not found: {album_code}")
        if not gallery.face_recognition_enabled:
            raise FeatureDisabledError(
                f"Face recognition is not enabled for gallery {album_code}"
            )
        if not gallery.photos:
            raise EmptyGalleryError(f"Gallery {album_code} has no photos")
        if album_code in self._starting or self._registry.is_running(album_code):
            raise JobAlreadyRunningError(
                f"Indexing already running for gallery {album_code}"
            )

        self._starting.add(album_code)
        try:
            await self._face_service.check_available()
            collection_id = collection_id_for(album_code)
            await self._ensure_collection(collection_id, context)

            start_index, faces_indexed = 0, 0
            previous = gallery.indexing_status
            if resume and previous.status in RESUMABLE_STATUSES:
                start_index = min(previous.next_photo_index, len(gallery.photos))
                faces_indexed = previous.faces_indexed

            job = IndexingJob(
                album_code=album_code,
                collection_id=collection_id,
                photos=gallery.photos,
                start_index=start_index,
                faces_indexed=faces_indexed,
                correlation_id=correlation_id,
            )
            tracker = ProgressTracker(
                self._store, album_code, job.total_photos, self._config
            )
            eta = await tracker.mark_started(start_index, faces_indexed)
            self._registry.submit(JobHandle(job=job, tracker=tracker))
        finally:
            self._starting.discard(album_code)

        self._logger.info(
            f"Indexing job queued for {job.total_photos} photos",
            context,
            collection_id=collection_id,
            start_index=start_index,
            eta_minutes=eta,
        )
        return StartIndexingResult(
            album_code=album_code,
            collection_id=collection_id,
            total_photos=job.total_photos,
            start_index=start_index,
            estimated_time_remaining=eta,
        )

    async def _ensure_collection(self, collection_id: str, context: LogContext) -> None:
        try:
            if collection_id in await self._face_service.list_collections():
                self._logger.debug(f"Collection {collection_id} exists", context)
                return
            await self._face_service.create_collection(collection_id)
            collection_ids = await self._face_service.list_collections()
        except FaceServiceError as e:
            raise CollectionCreateFailedError(
                f"Could not create collection {collection_id}: {e}"
            ) from e
        if collection_id not in collection_ids:
            raise CollectionCreateFailedError(
                f"Collection {collection_id} missing after creation"
            )

    def stop_indexing(self, album_code: str) -> bool:
        """Signal the gallery's running job to stop. False when none runs."""
        stopped = self._registry.cancel(album_code)
        if stopped:
            self._logger.info(
                "Stop requested",
                LogContext(
                    operation="stop_indexing",
                    component="job_controller",
                    album_code=normalize_album_code(album_code),
                ),
            )
        return stopped

    def is_running(self, album_code: str) -> bool:
        return self._registry.is_running(album_code)

    async def wait_for(self, album_code: str) -> Optional[IndexingStatusValue]:
        return await self._registry.wait(album_code)

    async def get_status(self, album_code: str) -> IndexingStatus:
        gallery = await self._store.find_gallery(album_code)
        if gallery is None:
            raise GalleryNotFoundError(f"Gallery not found: {album_code}")
        return gallery.indexing_status

    async def purge_collection(self, album_code: str) -> str:
        """
        Delete the gallery's face collection and every face in it.

        The gallery stays unsearchable until it is indexed again.
        """
        album_code = normalize_album_code(album_code)
        if self._registry.is_running(album_code):
            raise JobAlreadyRunningError(
                f"Cannot purge while indexing runs for gallery {album_code}"
            )
        if await self._store.find_gallery(album_code) is None:
            raise GalleryNotFoundError(f"Gallery not found: {album_code}")
        collection_id = collection_id_for(album_code)
        await self._face_service.delete_collection(collection_id)
        await self._store.update_indexing_status(album_code, {"is_ready_to_send": False})
        self._logger.info(
            f"Collection {collection_id} deleted",
            LogContext(
                operation="purge_collection",
                component="job_controller",
                album_code=album_code,
            ),
        )
        return collection_id

    async def shutdown(self) -> None:
        await self._registry.shutdown()
