"""Perceptual image comparison for visual element matching."""

import io
import logging
from typing import Any, Dict, Sequence, Union

import numpy as np
from PIL import Image

logger = logging.getLogger(__name__)

BoundingBox = Union[Dict[str, Any], Sequence[float]]

HASH_SIZE = 8
CORRELATION_SIZE = 32


def load_image(data: bytes) -> Image.Image:
    """Decode image bytes into a grayscale image."""
    return Image.open(io.BytesIO(data)).convert("L")


def crop_region(image: Image.Image, bbox: BoundingBox) -> Image.Image:
    """
    Crop a bounding box out of an image, clamped to the image bounds.

    Args:
        image: Source image
        bbox: ``{"x", "y", "width", "height"}`` or ``[x, y, width, height]``

    Raises:
        ValueError: If the box is malformed or empty after clamping
    """
    if isinstance(bbox, dict):
        x, y, width, height = (float(bbox[key]) for key in ("x", "y", "width", "height"))
    else:
        if len(bbox) != 4:
            raise ValueError(f"Bounding box needs 4 values, got {len(bbox)}")
        x, y, width, height = (float(v) for v in bbox)

    left = max(0, int(round(x)))
    top = max(0, int(round(y)))
    right = min(image.width, int(round(x + width)))
    bottom = min(image.height, int(round(y + height)))
    if right <= left or bottom <= top:
        raise ValueError(f"Bounding box {bbox} lies outside the {image.width}x{image.height} image")

    return image.crop((left, top, right, bottom))


def average_hash(image: Image.Image, hash_size: int = HASH_SIZE) -> np.ndarray:
    """64-bit average hash as a boolean array."""
    pixels = np.asarray(
        image.convert("L").resize((hash_size, hash_size), Image.Resampling.BILINEAR),
        dtype=np.float64,
    )
    return pixels > pixels.mean()


def hash_similarity(a: Image.Image, b: Image.Image) -> float:
    """1 - normalized Hamming distance between average hashes."""
    hash_a, hash_b = average_hash(a), average_hash(b)
    return 1.0 - np.count_nonzero(hash_a != hash_b) / hash_a.size


def correlation_similarity(a: Image.Image, b: Image.Image, size: int = CORRELATION_SIZE) -> float:
    """Normalized grayscale correlation mapped to [0, 1]; anti-correlation scores 0."""
    pixels_a = np.asarray(a.convert("L").resize((size, size), Image.Resampling.BILINEAR), dtype=np.float64)
    pixels_b = np.asarray(b.convert("L").resize((size, size), Image.Resampling.BILINEAR), dtype=np.float64)

    centered_a = pixels_a - pixels_a.mean()
    centered_b = pixels_b - pixels_b.mean()
    denominator = np.linalg.norm(centered_a) * np.linalg.norm(centered_b)

    if denominator == 0:
        # Flat images only correlate with flat images of the same tone
        if np.linalg.norm(centered_a) == 0 and np.linalg.norm(centered_b) == 0:
            return 1.0 - abs(pixels_a.mean() - pixels_b.mean()) / 255.0
        return 0.0

    return float(max(0.0, np.sum(centered_a * centered_b) / denominator))


def perceptual_similarity(reference: Image.Image, candidate: Image.Image) -> float:
    """Mean of hash and correlation similarity, clipped to [0, 1]."""
    score = 0.5 * hash_similarity(reference, candidate) + 0.5 * correlation_similarity(reference, candidate)
    return float(np.clip(score, 0.0, 1.0))
