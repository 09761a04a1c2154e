"""Gallery stores: DynamoDB for production, in-memory for tests and dry runs."""

import json
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional

import aioboto3
from botocore.exceptions import ClientError as BotocoreClientError

from .logging_config import get_logger
from .models import Gallery, IndexingConfig, IndexingStatus, normalize_album_code

if TYPE_CHECKING:
    from mypy_boto3_dynamodb.service_resource import Table
else:
    Table = Any

STATUS_ATTRIBUTE = "indexingStatus"


def build_status_update(fields: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build update_item arguments that SET each status field individually.

    Only the named attributes of the nested status map are written, so a
    concurrent reader never sees a record assembled from a stale read.
    """
    record = IndexingStatus.record_fields(fields)
    names = {"#s": STATUS_ATTRIBUTE}
    values: Dict[str, Any] = {}
    assignments = []
    for i, (alias, value) in enumerate(record.items()):
        names[f"#f{i}"] = alias
        values[f":v{i}"] = value
        assignments.append(f"#s.#f{i} = :v{i}")
    return {
        "UpdateExpression": "SET " + ", ".join(assignments),
        "ExpressionAttributeNames": names,
        "ExpressionAttributeValues": values,
    }


class DynamoGalleryStore:
    """Galleries stored in a DynamoDB table keyed by ``albumCode``.

    Use as an async context manager, or inject an opened table resource.
    """

    def __init__(
        self,
        config: Optional[IndexingConfig] = None,
        session: Optional[aioboto3.Session] = None,
        table: Optional[Table] = None,
    ):
        self._config = config or IndexingConfig()
        self._session = session
        self._table: Optional[Table] = table
        self._resource_cm: Any = None
        self._logger = get_logger("face-indexer.gallery-store")

    async def __aenter__(self) -> "DynamoGalleryStore":
        if self._table is None:
            session = self._session or aioboto3.Session()
            self._resource_cm = session.resource(
                "dynamodb", region_name=self._config.aws_region
            )
            resource = await self._resource_cm.__aenter__()
            self._table = await resource.Table(self._config.gallery_table)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._resource_cm is not None:
            await self._resource_cm.__aexit__(exc_type, exc_val, exc_tb)
            self._resource_cm = None
            self._table = None

    async def find_gallery(self, album_code: str) -> Optional[Gallery]:
        key = normalize_album_code(album_code)
        response = await self._table.get_item(Key={"albumCode": key})
        item = response.get("Item")
        if item is None:
            return None
        return Gallery.model_validate(item)

    async def update_indexing_status(
        self, album_code: str, fields: Dict[str, Any]
    ) -> None:
        key = {"albumCode": normalize_album_code(album_code)}
        try:
            await self._table.update_item(Key=key, **build_status_update(fields))
        except BotocoreClientError as e:
            if e.response.get("Error", {}).get("Code") != "ValidationException":
                raise
            # The nested map does not exist yet on galleries never indexed
            self._logger.debug(f"Creating {STATUS_ATTRIBUTE} map for {key['albumCode']}")
            await self._create_status_map(key)
            await self._table.update_item(Key=key, **build_status_update(fields))

    async def _create_status_map(self, key: Dict[str, str]) -> None:
        try:
            await self._table.update_item(
                Key=key,
                UpdateExpression="SET #s = :empty",
                ConditionExpression="attribute_not_exists(#s)",
                ExpressionAttributeNames={"#s": STATUS_ATTRIBUTE},
                ExpressionAttributeValues={":empty": {}},
            )
        except BotocoreClientError as e:
            if e.response.get("Error", {}).get("Code") != "ConditionalCheckFailedException":
                raise


class InMemoryGalleryStore:
    """Galleries kept in a dict, for tests and local dry runs."""

    def __init__(self, galleries: Optional[Iterable[Gallery]] = None):
        self._galleries: Dict[str, Gallery] = {}
        for gallery in galleries or []:
            self.add_gallery(gallery)

    @classmethod
    def from_json_file(cls, path: str) -> "InMemoryGalleryStore":
        """
        Load galleries from a JSON file holding one gallery record or a list
        of them, in the stored camelCase form.
        """
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if isinstance(data, dict):
            data = [data]
        return cls(Gallery.model_validate(item) for item in data)

    def add_gallery(self, gallery: Gallery) -> None:
        key = normalize_album_code(gallery.album_code)
        self._galleries[key] = gallery.model_copy(update={"album_code": key}, deep=True)

    async def find_gallery(self, album_code: str) -> Optional[Gallery]:
        gallery = self._galleries.get(normalize_album_code(album_code))
        return gallery.model_copy(deep=True) if gallery is not None else None

    async def update_indexing_status(
        self, album_code: str, fields: Dict[str, Any]
    ) -> None:
        key = normalize_album_code(album_code)
        gallery = self._galleries.get(key)
        if gallery is None:
            raise KeyError(f"Gallery not found: {key}")
        IndexingStatus.record_fields(fields)
        gallery.indexing_status = IndexingStatus.model_validate(
            {**gallery.indexing_status.model_dump(), **fields}
        )
