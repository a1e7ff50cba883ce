"""
swu_scanner/acquisition/frames.py: Frame sources and the content gate
"""

import logging
from typing import Optional, Protocol, Tuple

import cv2
import numpy as np

from swu_scanner.config import CONTENT_SAMPLE_SIZE, CONTENT_MIN_BRIGHTNESS, CONTENT_MIN_VARIANCE

logger = logging.getLogger(__name__)


class FrameSource(Protocol):
    """Anything that can hand out the current frame as an RGB array"""

    def read_frame(self) -> Optional[np.ndarray]:
        ...


class VideoCaptureSource:
    """Live camera frames via OpenCV, converted from BGR to RGB."""

    def __init__(self, device: int = 0, width: Optional[int] = None, height: Optional[int] = None):
        self.device = device
        self.capture = cv2.VideoCapture(device)
        if not self.capture.isOpened():
            raise RuntimeError(f"Could not open camera {device}")

        if width:
            self.capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        if height:
            self.capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        logger.info(f"Camera {device} opened")

    def read_frame(self) -> Optional[np.ndarray]:
        ok, frame = self.capture.read()
        if not ok or frame is None:
            return None
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)

    def release(self):
        self.capture.release()


class StaticFrameSource:
    """Serves the same frame on every read"""

    def __init__(self, frame: Optional[np.ndarray]):
        self.frame = frame

    def read_frame(self) -> Optional[np.ndarray]:
        return self.frame


def sample_center(frame: np.ndarray, size: int = CONTENT_SAMPLE_SIZE) -> np.ndarray:
    """Cut a size x size region from the middle of the frame (clipped to the frame)."""
    height, width = frame.shape[:2]
    top = max(0, height // 2 - size // 2)
    left = max(0, width // 2 - size // 2)
    return frame[top:top + size, left:left + size]


def frame_statistics(sample: np.ndarray) -> Tuple[float, float]:
    """
    Mean brightness and brightness variance of a sample

    Brightness of a pixel is the plain average of its colour channels.

    Returns:
        (mean, population variance)
    """
    pixels = np.asarray(sample, dtype=np.float64)
    if pixels.ndim == 3:
        pixels = pixels[..., :3].mean(axis=2)
    if pixels.size == 0:
        return 0.0, 0.0
    return float(pixels.mean()), float(pixels.var())


def frame_has_content(
    frame: Optional[np.ndarray],
    sample_size: int = CONTENT_SAMPLE_SIZE,
    min_brightness: float = CONTENT_MIN_BRIGHTNESS,
    min_variance: float = CONTENT_MIN_VARIANCE
) -> bool:
    """
    Content gate: reject dark frames (lens covered) and uniform frames (blank surface)

    Returns:
        True if the centre sample is bright enough and varied enough to be worth matching
    """
    if frame is None or frame.size == 0 or frame.shape[0] == 0 or frame.shape[1] == 0:
        return False

    mean, variance = frame_statistics(sample_center(frame, sample_size))
    return mean > min_brightness and variance > min_variance
