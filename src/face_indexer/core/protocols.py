"""Protocol definitions for dependency injection and testability."""

from typing import Any, Dict, List, Optional, Protocol

from .models import Gallery


class FaceServiceProtocol(Protocol):
    """Protocol for the external face-recognition service."""

    async def check_available(self) -> None:
        """Raise ServiceUnavailableError when the service cannot be used."""
        ...

    async def create_collection(self, collection_id: str) -> str:
        """Create a collection; an existing one counts as success."""
        ...

    async def list_collections(self) -> List[str]:
        """List collection ids."""
        ...

    async def delete_collection(self, collection_id: str) -> None:
        """Delete a collection and every face in it."""
        ...

    async def detect_faces(self, image_bytes: bytes) -> int:
        """Count faces visible in an image without storing anything."""
        ...

    async def index_faces(
        self,
        collection_id: str,
        image_bytes: bytes,
        external_id: str,
        max_faces: int = 10,
        quality_filter: str = "AUTO",
    ) -> List[Dict[str, Any]]:
        """Store faces of an image in a collection under external_id."""
        ...

    async def list_faces(self, collection_id: str) -> List[Dict[str, Any]]:
        """List faces stored in a collection."""
        ...

    async def delete_faces(self, collection_id: str, face_ids: List[str]) -> None:
        """Delete faces by id."""
        ...


class GalleryStoreProtocol(Protocol):
    """Protocol for the gallery data store."""

    async def find_gallery(self, album_code: str) -> Optional[Gallery]:
        """Find a gallery by album code."""
        ...

    async def update_indexing_status(
        self, album_code: str, fields: Dict[str, Any]
    ) -> None:
        """Set-only partial update of the gallery's indexing status."""
        ...


class PhotoFetcherProtocol(Protocol):
    """Protocol for downloading photos."""

    async def fetch(self, url: str) -> bytes:
        """Download a photo, raising FetchFailedError when retries run out."""
        ...


class LoggerProtocol(Protocol):
    """Protocol for logging operations."""

    def debug(self, message: str, *args: Any, **kwargs: Any) -> None:
        ...

    def info(self, message: str, *args: Any, **kwargs: Any) -> None:
        ...

    def warning(self, message: str, *args: Any, **kwargs: Any) -> None:
        ...

    def error(self, message: str, *args: Any, **kwargs: Any) -> None:
        ...
