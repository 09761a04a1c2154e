"""Testing utilities and fakes for the face indexer."""

from .fakes import (
    FakeDynamoTable,
    FakeFaceService,
    FakeGalleryStore,
    FakeHTTPSession,
    FakeLogger,
    FakePhotoFetcher,
    FakeRekognitionClient,
    FakeSleep,
    GalleryEnvironment,
    create_test_image,
    make_client_error,
    setup_test_gallery_environment,
)

__all__ = [
    "FakeFaceService",
    "FakeGalleryStore",
    "FakePhotoFetcher",
    "FakeHTTPSession",
    "FakeRekognitionClient",
    "FakeDynamoTable",
    "FakeLogger",
    "FakeSleep",
    "GalleryEnvironment",
    "create_test_image",
    "make_client_error",
    "setup_test_gallery_environment",
]
