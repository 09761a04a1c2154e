"""Tests for image_utils.py utility functions."""

import io

from PIL import Image

from face_indexer.core.image_utils import (
    EXTREME_TARGET_SIZE,
    encode_jpeg,
    resize_to_fit,
    select_compression_tier,
    transform_for_face_service,
)
from face_indexer.core.models import MB
from face_indexer.testing.fakes import create_test_image


def _open(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data))


class TestSelectCompressionTier:
    """Tests for select_compression_tier function."""

    def test_small_input_uses_high_quality(self):
        """Test inputs up to 5 MB use q85 and an 800px box."""
        tier = select_compression_tier(5 * MB)
        assert tier.quality == 85
        assert tier.target_size == 800
        assert tier.pre_resize is None

    def test_medium_input(self):
        """Test inputs over 5 MB use q70 and a 700px box."""
        tier = select_compression_tier(5 * MB + 1)
        assert tier.quality == 70
        assert tier.target_size == 700
        assert tier.pre_resize is None

    def test_large_input_is_pre_resized(self):
        """Test inputs over 10 MB get a 1200px pre-resize then q60 at 600px."""
        tier = select_compression_tier(10 * MB + 1)
        assert tier.quality == 60
        assert tier.target_size == 600
        assert tier.pre_resize == 1200


class TestResizeToFit:
    """Tests for resize_to_fit function."""

    def test_keeps_aspect_ratio(self):
        """Test a landscape image is scaled to the box width."""
        image = Image.new("RGB", (2000, 1000))
        resized = resize_to_fit(image, 800)
        assert resized.size == (800, 400)

    def test_portrait_image(self):
        """Test a portrait image is scaled to the box height."""
        image = Image.new("RGB", (900, 1800))
        resized = resize_to_fit(image, 600)
        assert resized.size == (300, 600)

    def test_never_enlarges(self):
        """Test small images are returned untouched."""
        image = Image.new("RGB", (120, 90))
        assert resize_to_fit(image, 800) is image


class TestEncodeJpeg:
    """Tests for encode_jpeg function."""

    def test_converts_to_rgb_jpeg(self):
        """Test images with alpha are flattened to RGB JPEG."""
        image = Image.new("RGBA", (50, 50), (255, 0, 0, 128))
        data = encode_jpeg(image, 85)
        decoded = _open(data)
        assert decoded.format == "JPEG"
        assert decoded.mode == "RGB"


class TestTransformForFaceService:
    """Tests for transform_for_face_service function."""

    def test_small_photo_is_reencoded(self):
        """Test a normal photo goes through the tiered pass."""
        result = transform_for_face_service(create_test_image(300, 200))
        assert result.stage == "tiered"
        assert result.fits()
        decoded = _open(result.data)
        assert decoded.format == "JPEG"
        assert decoded.size == (300, 200)

    def test_large_dimensions_fit_in_box(self):
        """Test a large photo is scaled into the 800px box."""
        result = transform_for_face_service(create_test_image(1600, 1200))
        decoded = _open(result.data)
        assert decoded.size == (800, 600)

    def test_png_input_becomes_jpeg(self):
        """Test non-JPEG inputs are re-encoded as JPEG."""
        png = create_test_image(200, 200, fmt="PNG")
        result = transform_for_face_service(png)
        assert result.stage == "tiered"
        assert _open(result.data).format == "JPEG"

    def test_extreme_pass_when_still_too_large(self):
        """Test the 400px pass runs when the tiered output is over the ceiling."""
        result = transform_for_face_service(create_test_image(1600, 1600), max_bytes=1000)
        assert result.stage == "extreme"
        width, height = _open(result.data).size
        assert max(width, height) <= EXTREME_TARGET_SIZE

    def test_undecodable_bytes_returned_unchanged(self):
        """Test the original buffer is returned when the image cannot be decoded."""
        data = b"definitely not an image"
        result = transform_for_face_service(data)
        assert result.stage == "original"
        assert result.data == data
        assert result.original_size == len(data)

    def test_oversized_garbage_does_not_fit(self):
        """Test an undecodable buffer over the ceiling is reported as not fitting."""
        data = b"\x00" * 2048
        result = transform_for_face_service(data, max_bytes=1024)
        assert result.stage == "original"
        assert not result.fits(1024)

    def test_exif_rotation_is_applied(self):
        """Test photos rotated via EXIF come out upright."""
        image = Image.new("RGB", (200, 100), "red")
        exif = Image.Exif()
        exif[0x0112] = 6  # rotate 90 degrees clockwise on display
        buffer = io.BytesIO()
        image.save(buffer, format="JPEG", exif=exif)

        result = transform_for_face_service(buffer.getvalue())

        assert _open(result.data).size == (100, 200)
