"""Image resizing utilities that fit photos under the face service payload ceiling."""

import io
from dataclasses import dataclass
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from .logging_config import get_logger
from .models import MB

FACE_SERVICE_MAX_BYTES = 5 * MB

EXTREME_TARGET_SIZE = 400
EXTREME_QUALITY = 40


@dataclass(frozen=True)
class CompressionTier:
    """Quality and bounding box used for a given input size."""

    quality: int
    target_size: int
    pre_resize: Optional[int] = None


@dataclass
class TransformResult:
    """Output of transform_for_face_service."""

    data: bytes
    stage: str
    original_size: int

    @property
    def size(self) -> int:
        return len(self.data)

    def fits(self, max_bytes: int = FACE_SERVICE_MAX_BYTES) -> bool:
        return self.size <= max_bytes


def select_compression_tier(size: int) -> CompressionTier:
    """
    Pick quality and target dimension from the raw byte size.

    Args:
        size: Length of the original image buffer in bytes

    Returns:
        CompressionTier for the size bracket
    """
    if size > 10 * MB:
        return CompressionTier(quality=60, target_size=600, pre_resize=1200)
    if size > 5 * MB:
        return CompressionTier(quality=70, target_size=700)
    return CompressionTier(quality=85, target_size=800)


def resize_to_fit(img: Image.Image, max_dimension: int) -> Image.Image:
    """Shrink an image to fit inside a max_dimension square, keeping aspect ratio."""
    if img.width <= max_dimension and img.height <= max_dimension:
        return img
    resized = img.copy()
    resized.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
    return resized


def encode_jpeg(img: Image.Image, quality: int) -> bytes:
    """Encode as progressive RGB JPEG."""
    if img.mode != "RGB":
        img = img.convert("RGB")
    output_stream = io.BytesIO()
    img.save(
        output_stream, format="JPEG", quality=quality, optimize=True, progressive=True
    )
    return output_stream.getvalue()


def load_image(image_bytes: bytes) -> Image.Image:
    """Decode bytes into an upright, fully loaded PIL image."""
    image = Image.open(io.BytesIO(image_bytes))
    image.load()
    # Phones store rotation in EXIF; the face service wants upright pixels
    return ImageOps.exif_transpose(image)


def transform_for_face_service(
    image_bytes: bytes, max_bytes: int = FACE_SERVICE_MAX_BYTES
) -> TransformResult:
    """
    Resize and recompress a photo for the face service.

    Stages run in order and each only when the previous output is still over
    ``max_bytes``: the size-tiered pass, then an extreme 400px/q40 pass.
    Never raises: when the image cannot be decoded or encoded the original
    buffer is returned with stage ``"original"`` and the caller decides.

    Args:
        image_bytes: Raw downloaded image
        max_bytes: Payload ceiling of the face service

    Returns:
        TransformResult with the bytes to send and the stage that produced them
    """
    logger = get_logger("face-indexer.transformer")
    original_size = len(image_bytes)
    tier = select_compression_tier(original_size)

    try:
        image = load_image(image_bytes)
        if tier.pre_resize:
            image = resize_to_fit(image, tier.pre_resize)
        image = resize_to_fit(image, tier.target_size)
        data = encode_jpeg(image, tier.quality)
        logger.debug(
            f"Resized {original_size} -> {len(data)} bytes "
            f"(quality={tier.quality}, target={tier.target_size})"
        )
        result = TransformResult(data=data, stage="tiered", original_size=original_size)

        if not result.fits(max_bytes):
            logger.debug("Still too large, applying extreme compression")
            extreme = resize_to_fit(load_image(data), EXTREME_TARGET_SIZE)
            result = TransformResult(
                data=encode_jpeg(extreme, EXTREME_QUALITY),
                stage="extreme",
                original_size=original_size,
            )
        return result

    except (
        OSError,
        SyntaxError,
        ValueError,
        Image.DecompressionBombError,
        UnidentifiedImageError,
    ) as img_err:
        logger.warning(f"Could not resize image, using original bytes: {img_err}")
        return TransformResult(
            data=image_bytes, stage="original", original_size=original_size
        )
