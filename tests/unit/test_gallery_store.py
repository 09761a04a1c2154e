"""Tests for the gallery stores."""

import asyncio
import json

import pytest

from face_indexer.core.gallery_store import (
    DynamoGalleryStore,
    InMemoryGalleryStore,
    build_status_update,
)
from face_indexer.core.models import Gallery, IndexingStatusValue, Photo
from face_indexer.testing.fakes import FakeDynamoTable, make_client_error

GALLERY_ITEM = {
    "albumCode": "wedding-42",
    "faceRecognitionEnabled": True,
    "photos": [{"url": "https://photos.example.com/0.jpg", "label": "IMG_0000"}],
}


class TestBuildStatusUpdate:
    """Tests for build_status_update."""

    def test_sets_each_field_inside_status_map(self):
        """Test only the named nested attributes are written."""
        update = build_status_update(
            {"status": IndexingStatusValue.IN_PROGRESS, "indexed_photos": 2}
        )
        assert update["UpdateExpression"] == "SET #s.#f0 = :v0, #s.#f1 = :v1"
        assert update["ExpressionAttributeNames"] == {
            "#s": "indexingStatus",
            "#f0": "status",
            "#f1": "indexedPhotos",
        }
        assert update["ExpressionAttributeValues"] == {":v0": "in_progress", ":v1": 2}


class TestDynamoGalleryStore:
    """Tests for DynamoGalleryStore against a fake table."""

    def test_find_gallery(self):
        """Test a stored item is parsed into a Gallery."""
        store = DynamoGalleryStore(table=FakeDynamoTable([dict(GALLERY_ITEM)]))
        gallery = asyncio.run(store.find_gallery("Wedding-42"))
        assert gallery.album_code == "wedding-42"
        assert gallery.face_recognition_enabled is True
        assert gallery.photos[0].label == "IMG_0000"

    def test_find_gallery_with_malformed_photos(self):
        """Test broken photo records load as empty photos in their position."""
        item = dict(
            GALLERY_ITEM,
            photos=[
                {"url": "https://photos.example.com/0.jpg"},
                {"url": None, "label": "broken"},
                {"url": 42, "label": ["IMG_0002"]},
                "not-a-photo",
            ],
        )
        store = DynamoGalleryStore(table=FakeDynamoTable([item]))

        gallery = asyncio.run(store.find_gallery("wedding-42"))

        assert [p.url for p in gallery.photos] == ["https://photos.example.com/0.jpg", "", "", ""]
        assert gallery.photos[1].label == "broken"
        assert gallery.photos[2].label == ""

    def test_find_missing_gallery(self):
        store = DynamoGalleryStore(table=FakeDynamoTable())
        assert asyncio.run(store.find_gallery("nope")) is None

    def test_update_existing_status(self):
        """Test updates touch only the given status fields."""
        item = dict(GALLERY_ITEM, indexingStatus={"status": "completed", "totalPhotos": 1})
        table = FakeDynamoTable([item])
        store = DynamoGalleryStore(table=table)

        asyncio.run(store.update_indexing_status("wedding-42", {"indexed_photos": 1}))

        assert table.items["wedding-42"]["indexingStatus"] == {
            "status": "completed",
            "totalPhotos": 1,
            "indexedPhotos": 1,
        }
        assert len(table.update_calls) == 1

    def test_update_creates_missing_status_map(self):
        """Test the status map is created on a gallery never indexed before."""
        table = FakeDynamoTable([dict(GALLERY_ITEM)])
        store = DynamoGalleryStore(table=table)

        asyncio.run(
            store.update_indexing_status(
                "wedding-42", {"status": IndexingStatusValue.IN_PROGRESS, "total_photos": 1}
            )
        )

        assert table.items["wedding-42"]["indexingStatus"] == {
            "status": "in_progress",
            "totalPhotos": 1,
        }
        assert len(table.update_calls) == 3

    def test_other_update_errors_propagate(self):
        """Test errors other than a missing map are not swallowed."""

        class FailingTable(FakeDynamoTable):
            async def update_item(self, Key, **kwargs):
                raise make_client_error("ProvisionedThroughputExceededException", "UpdateItem")

        store = DynamoGalleryStore(table=FailingTable([dict(GALLERY_ITEM)]))
        with pytest.raises(Exception, match="ProvisionedThroughputExceededException"):
            asyncio.run(store.update_indexing_status("wedding-42", {"indexed_photos": 1}))


class TestInMemoryGalleryStore:
    """Tests for InMemoryGalleryStore."""

    def test_find_is_case_insensitive(self):
        store = InMemoryGalleryStore([Gallery(album_code="Wedding-42")])
        assert asyncio.run(store.find_gallery("WEDDING-42")).album_code == "wedding-42"

    def test_find_returns_a_copy(self):
        """Test callers cannot mutate the stored gallery."""
        store = InMemoryGalleryStore([Gallery(album_code="wedding-42", photos=[Photo(url="a")])])
        gallery = asyncio.run(store.find_gallery("wedding-42"))
        gallery.photos.clear()
        assert len(asyncio.run(store.find_gallery("wedding-42")).photos) == 1

    def test_update_merges_fields(self):
        store = InMemoryGalleryStore([Gallery(album_code="wedding-42")])
        asyncio.run(
            store.update_indexing_status(
                "wedding-42", {"status": IndexingStatusValue.IN_PROGRESS, "total_photos": 4}
            )
        )
        asyncio.run(store.update_indexing_status("wedding-42", {"indexed_photos": 2}))

        status = asyncio.run(store.find_gallery("wedding-42")).indexing_status
        assert status.status == IndexingStatusValue.IN_PROGRESS
        assert status.total_photos == 4
        assert status.indexed_photos == 2

    def test_update_unknown_gallery(self):
        store = InMemoryGalleryStore()
        with pytest.raises(KeyError):
            asyncio.run(store.update_indexing_status("nope", {"indexed_photos": 1}))

    def test_from_json_file(self, tmp_path):
        """Test galleries load from a JSON file in their stored form."""
        path = tmp_path / "galleries.json"
        path.write_text(json.dumps([GALLERY_ITEM, {"albumCode": "party-7"}]))

        store = InMemoryGalleryStore.from_json_file(str(path))

        assert asyncio.run(store.find_gallery("wedding-42")).face_recognition_enabled
        assert asyncio.run(store.find_gallery("party-7")) is not None


class TestTableTyping:
    """Tests for the table type alias."""

    def test_stub_types_are_not_needed_at_runtime(self):
        """Test the DynamoDB stub types are only imported for type checking."""
        from typing import Any

        from face_indexer.core import gallery_store

        assert gallery_store.Table is Any
