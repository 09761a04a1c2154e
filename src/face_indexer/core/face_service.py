"""AWS Rekognition implementation of the face service."""

import asyncio
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

import aioboto3
import boto3
from botocore.exceptions import ClientError as BotocoreClientError

from .error_handling import (
    RetryPolicy,
    call_with_retry,
    exponential_backoff,
    is_throttling_error,
    with_error_handling,
)
from .exceptions import ServiceUnavailableError
from .logging_config import get_logger
from .models import IndexingConfig

if TYPE_CHECKING:
    from mypy_boto3_rekognition.client import RekognitionClient
else:
    RekognitionClient = Any


def default_credentials_check(region: str) -> bool:
    """True when the default boto3 credential chain resolves."""
    return boto3.Session(region_name=region).get_credentials() is not None


class RekognitionFaceService:
    """Face service backed by an AWS Rekognition client.

    Use as an async context manager so one aioboto3 client serves the whole
    job::

        async with RekognitionFaceService(config) as faces:
            await faces.create_collection("collection-wedding-42")

    An already opened client can be injected instead (tests do this).
    """

    def __init__(
        self,
        config: Optional[IndexingConfig] = None,
        session: Optional[aioboto3.Session] = None,
        client: Optional[RekognitionClient] = None,
        credentials_check: Optional[Callable[[str], bool]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._config = config or IndexingConfig()
        self._session = session
        self._client: Optional[RekognitionClient] = client
        self._client_cm: Any = None
        self._credentials_check = credentials_check or default_credentials_check
        self._sleep = sleep
        self._logger = get_logger("face-indexer.face-service")
        self.throttle_policy = RetryPolicy(
            max_attempts=3,
            backoff=exponential_backoff(1.0),
            retry_on=(BotocoreClientError,),
            should_retry=is_throttling_error,
        )

    async def __aenter__(self) -> "RekognitionFaceService":
        if self._client is None:
            session = self._session or aioboto3.Session()
            self._client_cm = session.client(
                "rekognition", region_name=self._config.aws_region
            )
            self._client = await self._client_cm.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client_cm is not None:
            await self._client_cm.__aexit__(exc_type, exc_val, exc_tb)
            self._client_cm = None
            self._client = None

    @property
    def client(self) -> RekognitionClient:
        if self._client is None:
            raise ServiceUnavailableError(
                "Rekognition client is not open; use 'async with RekognitionFaceService()'"
            )
        return self._client

    async def _call(self, operation: str, **params: Any) -> Dict[str, Any]:
        method = getattr(self.client, operation)
        return await call_with_retry(
            method, policy=self.throttle_policy, sleep=self._sleep, **params
        )

    async def check_available(self) -> None:
        """
        Raise ServiceUnavailableError unless credentials resolve and the
        service answers a cheap list call.
        """
        if self._client_cm is not None and not self._credentials_check(
            self._config.aws_region
        ):
            raise ServiceUnavailableError("AWS Rekognition not configured")
        try:
            await self.client.list_collections(MaxResults=1)
        except BotocoreClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            raise ServiceUnavailableError(f"AWS Rekognition unavailable ({code})") from e
        except Exception as e:
            # Endpoint and credential errors from botocore are not ClientErrors
            raise ServiceUnavailableError(f"AWS Rekognition unavailable: {e}") from e

    @with_error_handling
    async def create_collection(self, collection_id: str) -> str:
        try:
            await self._call("create_collection", CollectionId=collection_id)
            self._logger.info(f"Face collection created: {collection_id}")
        except BotocoreClientError as e:
            if e.response.get("Error", {}).get("Code") != "ResourceAlreadyExistsException":
                raise
            self._logger.info(f"Collection already exists: {collection_id}")
        return collection_id

    @with_error_handling
    async def list_collections(self) -> List[str]:
        collection_ids: List[str] = []
        params: Dict[str, Any] = {"MaxResults": 100}
        while True:
            response = await self._call("list_collections", **params)
            collection_ids.extend(response.get("CollectionIds", []))
            next_token = response.get("NextToken")
            if not next_token:
                return collection_ids
            params["NextToken"] = next_token

    @with_error_handling
    async def delete_collection(self, collection_id: str) -> None:
        await self._call("delete_collection", CollectionId=collection_id)
        self._logger.info(f"Face collection deleted: {collection_id}")

    @with_error_handling
    async def detect_faces(self, image_bytes: bytes) -> int:
        response = await self._call(
            "detect_faces", Image={"Bytes": image_bytes}, Attributes=["DEFAULT"]
        )
        return len(response.get("FaceDetails", []))

    @with_error_handling
    async def index_faces(
        self,
        collection_id: str,
        image_bytes: bytes,
        external_id: str,
        max_faces: int = 10,
        quality_filter: str = "AUTO",
    ) -> List[Dict[str, Any]]:
        response = await self._call(
            "index_faces",
            CollectionId=collection_id,
            Image={"Bytes": image_bytes},
            ExternalImageId=external_id,
            DetectionAttributes=["DEFAULT"],
            MaxFaces=max_faces,
            QualityFilter=quality_filter,
        )
        face_records = response.get("FaceRecords", [])
        self._logger.debug(f"Indexed {len(face_records)} faces for {external_id}")
        return face_records

    @with_error_handling
    async def list_faces(self, collection_id: str) -> List[Dict[str, Any]]:
        faces: List[Dict[str, Any]] = []
        params: Dict[str, Any] = {"CollectionId": collection_id, "MaxResults": 1000}
        while True:
            response = await self._call("list_faces", **params)
            faces.extend(response.get("Faces", []))
            next_token = response.get("NextToken")
            if not next_token:
                return faces
            params["NextToken"] = next_token

    @with_error_handling
    async def delete_faces(self, collection_id: str, face_ids: List[str]) -> None:
        if not face_ids:
            return
        await self._call("delete_faces", CollectionId=collection_id, FaceIds=face_ids)
        self._logger.debug(f"Deleted {len(face_ids)} faces from {collection_id}")
