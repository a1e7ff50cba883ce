"""
swu_scanner/indexing/image_processor.py: Image preprocessing for hashing
Normalizes reference artwork and camera frames to the 9x8 luminance grid
"""

import io
import math
from enum import Enum
from pathlib import Path
from typing import List, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from swu_scanner.config import (
    BINDER_COLS, BINDER_GUTTER_RATIO, BINDER_MARGIN_RATIO, BINDER_ROWS,
    CARD_ASPECT_WIDTH, CARD_ASPECT_HEIGHT, CENTER_CROP_WIDTH_RATIO,
    HASH_GRID_WIDTH, HASH_GRID_HEIGHT
)

ImageSource = Union[Image.Image, np.ndarray, bytes, bytearray, str, Path]

# ITU-R 601-2 luma weights
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)


class InvalidSourceError(ValueError):
    """Raised when an image source is empty or cannot be decoded."""


class CropMode(str, Enum):
    """How much of the source is assumed to be the card face"""
    FULL_FRAME = "full_frame"
    CENTER_CROP = "center_crop"


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _from_array(array: np.ndarray) -> Image.Image:
    if array.ndim not in (2, 3) or array.shape[0] == 0 or array.shape[1] == 0:
        raise InvalidSourceError(f"Invalid frame dimensions: {array.shape}")

    if array.dtype != np.uint8:
        array = np.clip(array, 0, 255).astype(np.uint8)

    if array.ndim == 3 and array.shape[2] not in (3, 4):
        raise InvalidSourceError(f"Unsupported channel count: {array.shape[2]}")

    # Mode is inferred from shape: L, RGB or RGBA
    return Image.fromarray(np.ascontiguousarray(array))


def load_image(source: ImageSource) -> Image.Image:
    """
    Load any supported image source as an RGB PIL Image

    Args:
        source: PIL Image, RGB/RGBA/grayscale numpy array, encoded image
            bytes, or path to an image file

    Returns:
        RGB PIL Image with non-zero dimensions

    Raises:
        InvalidSourceError: if the source is empty or cannot be decoded
    """
    if isinstance(source, Image.Image):
        img = source
    elif isinstance(source, np.ndarray):
        img = _from_array(source)
    elif isinstance(source, (bytes, bytearray)):
        if not source:
            raise InvalidSourceError("Empty image data")
        try:
            img = Image.open(io.BytesIO(source))
            img.load()
        except (UnidentifiedImageError, OSError) as e:
            raise InvalidSourceError(f"Could not decode image data: {e}") from e
    elif isinstance(source, (str, Path)):
        try:
            img = Image.open(source)
            img.load()
        except (UnidentifiedImageError, OSError) as e:
            raise InvalidSourceError(f"Could not load image: {source}") from e
    else:
        raise InvalidSourceError(f"Unsupported image source type: {type(source).__name__}")

    if img.width <= 0 or img.height <= 0:
        raise InvalidSourceError(f"Invalid image dimensions: {img.width}x{img.height}")

    if img.mode != 'RGB':
        img = img.convert('RGB')

    return img


def crop_card_region(image: Image.Image) -> Image.Image:
    """
    Crop the card guide region from the centre of a camera frame.

    The guide covers half the frame width; its height follows the 63:88 card
    aspect ratio. Parts of the box outside the frame come back black.
    """
    card_w = image.width * CENTER_CROP_WIDTH_RATIO
    card_h = card_w * (CARD_ASPECT_HEIGHT / CARD_ASPECT_WIDTH)
    left = _round_half_up((image.width - card_w) / 2)
    top = _round_half_up((image.height - card_h) / 2)

    box = (left, top, left + _round_half_up(card_w), top + _round_half_up(card_h))
    return image.crop(box)


def to_luminance_grid(image: Image.Image) -> np.ndarray:
    """Resample to the hash grid and convert each pixel to luminance."""
    small = image.resize((HASH_GRID_WIDTH, HASH_GRID_HEIGHT), Image.Resampling.BILINEAR)
    pixels = np.asarray(small, dtype=np.float64)
    return pixels @ LUMA_WEIGHTS


def normalize(source: ImageSource, mode: CropMode = CropMode.FULL_FRAME) -> np.ndarray:
    """
    Normalize an image or frame to the 9x8 grayscale grid used for hashing

    Args:
        source: Any supported image source (see load_image)
        mode: FULL_FRAME if the source is already a tightly cropped card face,
            CENTER_CROP for a wider camera frame with the card in the guide

    Returns:
        Float array of shape (8, 9), rows by columns

    Raises:
        InvalidSourceError: if the source is empty or cannot be decoded
    """
    img = load_image(source)

    if CropMode(mode) == CropMode.CENTER_CROP:
        img = crop_card_region(img)

    return to_luminance_grid(img)


def split_binder_page(
    source: ImageSource,
    rows: int = BINDER_ROWS,
    cols: int = BINDER_COLS
) -> List[Image.Image]:
    """
    Split a photo of a binder page into one image per pocket

    The pockets sit inside a margin of BINDER_MARGIN_RATIO of the page size,
    separated by gutters of BINDER_GUTTER_RATIO of the area inside the margin.
    Each returned image is assumed to be a full card face.

    Args:
        source: Any supported image source (see load_image)
        rows: Pocket rows on the page
        cols: Pocket columns on the page

    Returns:
        rows * cols images, row by row from the top left

    Raises:
        InvalidSourceError: if the source is empty or cannot be decoded
    """
    img = load_image(source)

    margin_x = img.width * BINDER_MARGIN_RATIO
    margin_y = img.height * BINDER_MARGIN_RATIO
    usable_w = img.width - 2 * margin_x
    usable_h = img.height - 2 * margin_y
    gutter_x = usable_w * BINDER_GUTTER_RATIO
    gutter_y = usable_h * BINDER_GUTTER_RATIO
    pocket_w = (usable_w - (cols - 1) * gutter_x) / cols
    pocket_h = (usable_h - (rows - 1) * gutter_y) / rows

    width = max(1, _round_half_up(pocket_w))
    height = max(1, _round_half_up(pocket_h))

    pockets = []
    for row in range(rows):
        for col in range(cols):
            left = _round_half_up(margin_x + col * (pocket_w + gutter_x))
            top = _round_half_up(margin_y + row * (pocket_h + gutter_y))
            pockets.append(img.crop((left, top, left + width, top + height)))
    return pockets
