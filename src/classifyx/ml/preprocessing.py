"""Image preprocessing: decode files and convert RGBA pixel buffers to model input.

The tensor layout is the one MobileNetV2 (ONNX model zoo, opset 10) was exported
with: float32, shape (1, 3, H, W), channel-planar, values scaled to [0, 1] with
no mean/std normalization.
"""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from classifyx.errors import InvalidInputError

if TYPE_CHECKING:
    from numpy.typing import NDArray

CHANNELS_PER_PIXEL: int = 4
TENSOR_CHANNELS: int = 3


def to_tensor(
    pixels: bytes | bytearray | memoryview | NDArray[np.uint8],
    source_width: int,
    source_height: int,
    target_width: int,
    target_height: int,
) -> NDArray[np.float32]:
    """Convert an interleaved RGBA buffer into a (1, 3, H, W) float32 tensor.

    The image is stretched to the target size (aspect ratio is not preserved)
    with bilinear resampling. Alpha is discarded.

    Args:
        pixels: Row-major RGBA bytes, ``source_width * source_height * 4`` long.
        source_width: Width of the buffer in pixels.
        source_height: Height of the buffer in pixels.
        target_width: Model input width.
        target_height: Model input height.

    Returns:
        C-contiguous float32 array of shape (1, 3, target_height, target_width).

    Raises:
        InvalidInputError: If any dimension is not a positive integer or the buffer
            length does not match the stated dimensions.
    """
    for name, value in (
        ("source_width", source_width),
        ("source_height", source_height),
        ("target_width", target_width),
        ("target_height", target_height),
    ):
        if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
            raise InvalidInputError(f"{name} must be an integer, got {type(value).__name__}")
        if value < 1:
            raise InvalidInputError(f"{name} must be positive, got {value}")

    flat = _as_uint8(pixels)
    expected = source_width * source_height * CHANNELS_PER_PIXEL
    if flat.size != expected:
        raise InvalidInputError(
            f"Pixel buffer has {flat.size} values, expected {expected} "
            f"for {source_width}x{source_height} RGBA"
        )

    rgb = flat.reshape(source_height, source_width, CHANNELS_PER_PIXEL)[:, :, :TENSOR_CHANNELS]

    if (source_width, source_height) != (target_width, target_height):
        resized = Image.fromarray(np.ascontiguousarray(rgb)).resize(
            (target_width, target_height),
            resample=Image.Resampling.BILINEAR,
        )
        rgb = np.asarray(resized, dtype=np.uint8)

    # HWC -> CHW, then add the batch axis
    planar = rgb.transpose(2, 0, 1).astype(np.float32) / np.float32(255.0)
    return np.ascontiguousarray(planar[np.newaxis, ...])


def decode_image(image_bytes: bytes, max_pixels: int) -> tuple[NDArray[np.uint8], int, int]:
    """Decode raw file bytes into an interleaved RGBA buffer.

    EXIF orientation is applied before conversion so that phone photos come
    out upright.

    Args:
        image_bytes: Raw file bytes (any format Pillow can read).
        max_pixels: Upper bound on ``width * height``.

    Returns:
        Tuple of (flat RGBA uint8 array, width, height).

    Raises:
        InvalidInputError: If the data is empty, cannot be decoded, or the
            image exceeds ``max_pixels``.
    """
    if not image_bytes:
        raise InvalidInputError("Empty image data")

    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            width, height = img.size
            if width * height > max_pixels:
                raise InvalidInputError(
                    f"Image is {width}x{height} ({width * height} pixels), limit is {max_pixels}"
                )
            oriented = ImageOps.exif_transpose(img)
            rgba = oriented.convert("RGBA")
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError) as exc:
        raise InvalidInputError(f"Could not decode image: {exc}") from exc

    width, height = rgba.size
    return np.asarray(rgba, dtype=np.uint8).reshape(-1), width, height


def _as_uint8(pixels: bytes | bytearray | memoryview | NDArray[np.uint8]) -> NDArray[np.uint8]:
    if isinstance(pixels, np.ndarray):
        if pixels.dtype != np.uint8:
            raise InvalidInputError(f"Expected uint8 pixel data, got {pixels.dtype}")
        return pixels.reshape(-1)
    if isinstance(pixels, (bytes, bytearray, memoryview)):
        return np.frombuffer(pixels, dtype=np.uint8)
    try:
        return np.asarray(pixels, dtype=np.uint8).reshape(-1)
    except (TypeError, ValueError, OverflowError) as exc:
        raise InvalidInputError(f"Pixel data is not a sequence of 8-bit values: {exc}") from exc
