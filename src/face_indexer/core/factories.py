"""Factory classes for creating configured service instances."""

import contextlib
from typing import AsyncIterator, Optional

import aioboto3

from .controller import JobController
from .face_service import RekognitionFaceService
from .fetcher import PhotoFetcher
from .gallery_store import DynamoGalleryStore, InMemoryGalleryStore
from .models import IndexingConfig
from .orchestrator import BatchOrchestrator
from .observability import MetricsCollector, StructuredLogger
from .protocols import GalleryStoreProtocol, LoggerProtocol


class LoggerFactory:
    """Factory for creating logger instances."""

    @staticmethod
    def create_logger(name: str, config: Optional[IndexingConfig] = None) -> LoggerProtocol:
        """Create a structured logger, at DEBUG level when the config asks for it."""
        level = "DEBUG" if config is not None and config.debug else None
        return StructuredLogger(name, level=level)


class FaceIndexerFactory:
    """Factory wiring the production pipeline.

    The AWS clients and the HTTP session live as long as the returned
    context, so the factory hands out controllers through an async
    context manager::

        async with FaceIndexerFactory.create_controller(config) as controller:
            await controller.start_indexing("wedding-42")
    """

    @staticmethod
    @contextlib.asynccontextmanager
    async def create_controller(
        config: Optional[IndexingConfig] = None,
        store: Optional[GalleryStoreProtocol] = None,
        session: Optional[aioboto3.Session] = None,
    ) -> AsyncIterator[JobController]:
        """
        Create a controller backed by Rekognition, DynamoDB and aiohttp.

        Args:
            config: Indexing configuration (defaults to the environment)
            store: Gallery store to use instead of DynamoDB
            session: Shared aioboto3 session
        """
        config = config or IndexingConfig.from_env()
        session = session or aioboto3.Session()

        async with contextlib.AsyncExitStack() as stack:
            if store is None:
                store = await stack.enter_async_context(
                    DynamoGalleryStore(config, session=session)
                )
            face_service = await stack.enter_async_context(
                RekognitionFaceService(config, session=session)
            )
            fetcher = await stack.enter_async_context(PhotoFetcher(config))

            orchestrator = BatchOrchestrator(
                face_service,
                fetcher,
                config,
                logger=LoggerFactory.create_logger("face-indexer.orchestrator", config),
                metrics_collector=MetricsCollector(),
            )
            controller = JobController(
                store,
                face_service,
                fetcher,
                config,
                orchestrator=orchestrator,
                logger=LoggerFactory.create_logger("face-indexer.controller", config),
            )
            try:
                yield controller
            finally:
                await controller.shutdown()

    @staticmethod
    def create_local_store(path: str) -> InMemoryGalleryStore:
        """Gallery store loaded from a JSON file, for dry runs without DynamoDB."""
        return InMemoryGalleryStore.from_json_file(path)
