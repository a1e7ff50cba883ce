"""
swu_scanner/recognition/matcher.py: Nearest-neighbour fingerprint matching

1. Input: captured frame or image
2. Normalize (full frame or centre crop) and compute dHash
3. Linear scan over every reference fingerprint
4. Accept the closest one if within MATCH_MAX_DISTANCE bits, else no match
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

import numpy as np

from swu_scanner.config import MATCH_MAX_DISTANCE
from swu_scanner.indexing.image_processor import CropMode, ImageSource
from swu_scanner.indexing.phash import batch_hamming_distance, compute_confidence, hash_image
from swu_scanner.indexing.records import CardIdentity, FingerprintRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchResult:
    """Accepted match for a capture"""
    identity: CardIdentity
    distance: int
    confidence: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            'identity': self.identity.to_dict(),
            'distance': int(self.distance),
            'confidence': int(self.confidence),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


class HashMatcher:
    """Matches capture fingerprints against an immutable reference set."""

    def __init__(self, records: Iterable[FingerprintRecord], max_distance: int = MATCH_MAX_DISTANCE):
        """
        Args:
            records: Reference fingerprints to search
            max_distance: Largest Hamming distance still accepted as a match
        """
        self.records = tuple(records)
        self.max_distance = max_distance

    def __len__(self):
        return len(self.records)

    def match_fingerprint(self, fingerprint: str) -> Optional[MatchResult]:
        """
        Find the closest reference fingerprint

        Ties keep the first record seen.

        Returns:
            MatchResult if the best distance is within max_distance, else None
        """
        if not self.records:
            return None

        distances = batch_hamming_distance(fingerprint, [record.fingerprint for record in self.records])
        # argmin returns the first minimum
        best_idx = int(np.argmin(distances))
        best = self.records[best_idx]
        best_distance = int(distances[best_idx])

        if best_distance > self.max_distance:
            logger.debug(f"No match: closest is {best.key} at distance {best_distance}")
            return None

        return MatchResult(
            identity=best.identity,
            distance=best_distance,
            confidence=compute_confidence(best_distance)
        )

    def match(self, source: ImageSource, mode: CropMode = CropMode.FULL_FRAME) -> Optional[MatchResult]:
        """
        Hash a capture and match it

        Raises:
            InvalidSourceError: if the capture is empty or cannot be decoded
        """
        fingerprint = hash_image(source, mode)
        return self.match_fingerprint(fingerprint)
