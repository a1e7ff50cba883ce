"""
swu_scanner/indexing/phash.py: Perceptual hashing utilities
Computes 64-bit difference hashes (dHash) as '0'/'1' strings and compares them
"""

from typing import List

import imagehash
import numpy as np

from swu_scanner.config import HASH_BITS, HASH_GRID_WIDTH, HASH_GRID_HEIGHT
from swu_scanner.indexing.image_processor import CropMode, ImageSource, normalize

MAX_DISTANCE = HASH_BITS


def compute_dhash(grid: np.ndarray) -> str:
    """
    Compute difference hash from a 9x8 luminance grid

    Each pixel is compared to its right neighbour in the same row; the bit is
    '1' when the left pixel is strictly darker. Rows are concatenated top to
    bottom.

    Args:
        grid: Array of shape (8, 9) with luminance values

    Returns:
        64-character string of '0'/'1'
    """
    grid = np.asarray(grid, dtype=np.float64)
    if grid.shape != (HASH_GRID_HEIGHT, HASH_GRID_WIDTH):
        raise ValueError(f"Expected grid of shape {(HASH_GRID_HEIGHT, HASH_GRID_WIDTH)}, got {grid.shape}")

    diff = grid[:, :-1] < grid[:, 1:]
    return ''.join('1' if bit else '0' for bit in diff.flatten())


def hash_image(source: ImageSource, mode: CropMode = CropMode.FULL_FRAME) -> str:
    """Normalize an image source and compute its dHash fingerprint."""
    return compute_dhash(normalize(source, mode))


def hamming_distance(hash1: str, hash2: str) -> int:
    """
    Compute Hamming distance between two fingerprints

    Fingerprints of unequal length (corrupt records) are treated as maximally
    distant rather than raising.

    Args:
        hash1: First fingerprint
        hash2: Second fingerprint

    Returns:
        Number of differing positions, MAX_DISTANCE on length mismatch
    """
    if len(hash1) != len(hash2):
        return MAX_DISTANCE
    return sum(1 for a, b in zip(hash1, hash2) if a != b)


def compute_confidence(distance: int) -> int:
    """Convert a Hamming distance to a 0-100 confidence score (rounded half up)."""
    return int(np.floor((1 - distance / MAX_DISTANCE) * 100 + 0.5))


def batch_hamming_distance(query_hash: str, candidate_hashes: List[str]) -> np.ndarray:
    """
    Compute Hamming distances between a query and many candidate fingerprints

    Returns:
        Numpy array of distances, in candidate order
    """
    if not candidate_hashes:
        return np.array([], dtype=np.int32)
    return np.array([hamming_distance(query_hash, h) for h in candidate_hashes], dtype=np.int32)


def fingerprint_to_hex(fingerprint: str) -> str:
    """
    Convert a binary fingerprint to the 16-digit hex form used by imagehash

    Args:
        fingerprint: 64-character string of '0'/'1'

    Returns:
        Hash as hex string
    """
    if len(fingerprint) != MAX_DISTANCE or set(fingerprint) - {'0', '1'}:
        raise ValueError(f"Not a {MAX_DISTANCE}-bit fingerprint: {fingerprint!r}")
    bits = np.array([c == '1' for c in fingerprint], dtype=bool)
    return str(imagehash.ImageHash(bits.reshape(HASH_GRID_HEIGHT, HASH_GRID_WIDTH - 1)))


def hex_to_fingerprint(hex_hash: str) -> str:
    """Convert a 16-digit imagehash hex string back to a binary fingerprint."""
    bits = imagehash.hex_to_hash(hex_hash).hash.flatten()
    return ''.join('1' if bit else '0' for bit in bits)
