"""
Acquisition package: live frame sources, the content gate and the auto-scan loop.
"""

from swu_scanner.acquisition.frames import (
    FrameSource,
    StaticFrameSource,
    VideoCaptureSource,
    frame_has_content,
    frame_statistics,
    sample_center,
)
from swu_scanner.acquisition.scanner import AutoScanner, ScannerState

__all__ = [
    'FrameSource',
    'StaticFrameSource',
    'VideoCaptureSource',
    'frame_has_content',
    'frame_statistics',
    'sample_center',
    'AutoScanner',
    'ScannerState',
]
