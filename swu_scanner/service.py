"""
swu_scanner/service.py: Recognition service

Owns the in-memory reference set and its lifecycle (empty -> building ->
ready), and exposes the operations collaborators use: load or build the
reference database, identify a single capture, run the auto-scan loop, and
rebuild when new sets are released.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from swu_scanner.acquisition.frames import FrameSource
from swu_scanner.acquisition.scanner import AutoScanner, ResultCallback
from swu_scanner.config import (
    AUTO_SCAN_COOLDOWN, AUTO_SCAN_INTERVAL, HASH_BATCH_SIZE,
    MATCH_MAX_DISTANCE, MIN_REFERENCE_RECORDS, SET_CODES
)
from swu_scanner.database.db import FingerprintStore
from swu_scanner.indexing.image_processor import CropMode, ImageSource, split_binder_page
from swu_scanner.indexing.indexer import (
    ProgressCallback, ProgressPhase, ReferenceIndexer, emit_progress
)
from swu_scanner.indexing.records import CardIdentity, FingerprintRecord
from swu_scanner.recognition.matcher import HashMatcher, MatchResult
from swu_scanner.utils.catalog import SwuDbCatalog
from swu_scanner.utils.fetch import Fetcher

logger = logging.getLogger(__name__)


class MatcherState(str, Enum):
    EMPTY = "empty"
    BUILDING = "building"
    READY = "ready"


class ReferenceDatabaseUnavailableError(RuntimeError):
    """Raised when no reference fingerprints could be loaded or built."""


@dataclass(frozen=True)
class IdentifyResult:
    """Outcome of one identification call"""
    matched: bool
    identity: Optional[CardIdentity] = None
    confidence: Optional[int] = None
    distance: Optional[int] = None

    @classmethod
    def from_match(cls, match: Optional[MatchResult]) -> 'IdentifyResult':
        if match is None:
            return cls(matched=False)
        return cls(
            matched=True,
            identity=match.identity,
            confidence=match.confidence,
            distance=match.distance
        )

    def to_dict(self) -> Dict[str, Any]:
        result = {'matched': self.matched}
        if self.matched:
            result.update({
                'identity': self.identity.to_dict(),
                'confidence': self.confidence,
                'distance': self.distance,
            })
        return result


class RecognitionService:
    """Single owner of the reference set, the matcher and the auto-scan loop."""

    def __init__(
        self,
        store: Optional[FingerprintStore] = None,
        set_codes: Optional[List[str]] = None,
        fetcher_factory: Callable[[], Fetcher] = Fetcher,
        catalog_factory: Optional[Callable[[Fetcher], SwuDbCatalog]] = None,
        min_records: int = MIN_REFERENCE_RECORDS,
        max_distance: int = MATCH_MAX_DISTANCE,
        batch_size: int = HASH_BATCH_SIZE,
        cooldown: float = AUTO_SCAN_COOLDOWN
    ):
        """
        Args:
            store: Durable fingerprint store (default: SQLite at DATABASE_PATH)
            set_codes: Sets making up the reference database (default: SET_CODES)
            fetcher_factory: Creates the async-context-managed Fetcher used during builds
            catalog_factory: Creates the catalog from a Fetcher (default: SwuDbCatalog)
            min_records: A cached store must hold more records than this to be used
            max_distance: Match acceptance threshold in bits
            batch_size: Concurrent artwork fetches per batch
            cooldown: Auto-scan cooldown in seconds
        """
        self.store = store if store is not None else FingerprintStore()
        self.set_codes = list(set_codes) if set_codes is not None else list(SET_CODES)
        self.fetcher_factory = fetcher_factory
        self.catalog_factory = catalog_factory or SwuDbCatalog
        self.min_records = min_records
        self.max_distance = max_distance
        self.batch_size = batch_size
        self.cooldown = cooldown

        self.state = MatcherState.EMPTY
        self._matcher = HashMatcher((), max_distance)
        self._scanner: Optional[AutoScanner] = None

    @property
    def is_ready(self) -> bool:
        return self.state == MatcherState.READY

    @property
    def record_count(self) -> int:
        return len(self._matcher)

    def _missing_sets(self) -> List[str]:
        """Configured sets the catalog did not know about at the last build"""
        meta = self.store.get_meta()
        if meta is None:
            return []
        known = set(meta['set_codes'])
        return [code for code in self.set_codes if code not in known]

    def _load_cached(self, progress: Optional[ProgressCallback]) -> List[FingerprintRecord]:
        emit_progress(progress, ProgressPhase.LOADING, 10, "Loading card database...")
        records = self.store.get_all()
        emit_progress(progress, ProgressPhase.READY, 100, "Card database ready")
        logger.info(f"Loaded {len(records)} reference fingerprints from cache")
        return records

    async def _build(
        self,
        progress: Optional[ProgressCallback],
        message: str,
        replace: bool
    ) -> List[FingerprintRecord]:
        emit_progress(progress, ProgressPhase.FETCHING_CATALOG, 0, message)
        async with self.fetcher_factory() as fetcher:
            catalog = self.catalog_factory(fetcher)
            indexer = ReferenceIndexer(catalog, fetcher, self.store, batch_size=self.batch_size)
            return await indexer.build(self.set_codes, progress, replace=replace)

    async def _load_or_build(self, progress: Optional[ProgressCallback]) -> List[FingerprintRecord]:
        """
        Use the cache if it is big enough and covers every configured set,
        otherwise build. Cached records are only replaced by a successful
        build, and are used as-is when the build fails.
        """
        cached_count = self.store.count()
        missing = self._missing_sets()

        if cached_count > self.min_records and not missing:
            return self._load_cached(progress)

        if cached_count > self.min_records:
            logger.info(f"New sets available ({', '.join(missing)}), updating reference database")
            message = "New sets available, updating card database..."
        else:
            logger.info(f"Reference database has {cached_count} records, building")
            message = "Building card database (first time)..."

        try:
            records = await self._build(progress, message, replace=cached_count > 0)
        except Exception as e:
            if not cached_count:
                raise
            logger.warning(f"Reference database build failed ({e}), keeping {cached_count} cached records")
            return self._load_cached(progress)

        if not records and cached_count:
            logger.warning(f"Build produced no records, keeping {cached_count} cached records")
            return self._load_cached(progress)
        return records

    def _install(self, records: List[FingerprintRecord]):
        self._matcher = HashMatcher(records, self.max_distance)
        self.state = MatcherState.READY

    async def init_matcher(self, progress: Optional[ProgressCallback] = None):
        """
        Load the reference set from the store, building it first if needed

        No-op when already ready or while another load/build is running.

        Raises:
            ReferenceDatabaseUnavailableError: if no reference data could be
                loaded or built
        """
        if self.state in (MatcherState.READY, MatcherState.BUILDING):
            return

        self.state = MatcherState.BUILDING
        try:
            records = await self._load_or_build(progress)
        except Exception as e:
            self.state = MatcherState.EMPTY
            logger.error(f"Failed to init recognition: {e}", exc_info=True)
            raise ReferenceDatabaseUnavailableError(
                "Failed to load card database. Check your internet connection and try again."
            ) from e

        if not records:
            self.state = MatcherState.EMPTY
            raise ReferenceDatabaseUnavailableError(
                "Card database is empty: no card artwork could be fetched and hashed."
            )

        self._install(records)

    async def rebuild_reference_database(self, progress: Optional[ProgressCallback] = None):
        """
        Build the reference set from scratch and swap it in

        The persisted and in-memory sets are replaced only once the new build
        has records; a failed rebuild leaves the current ones in place.

        Raises:
            ReferenceDatabaseUnavailableError: if the rebuild failed or produced
                no records
        """
        if self.state == MatcherState.BUILDING:
            logger.warning("Reference database build already in progress")
            return

        previous = self.state
        self.state = MatcherState.BUILDING
        try:
            records = await self._build(progress, "Rebuilding card database...", replace=True)
        except Exception as e:
            self.state = previous
            logger.error(f"Failed to rebuild reference database: {e}", exc_info=True)
            raise ReferenceDatabaseUnavailableError(
                "Failed to rebuild card database. Check your internet connection and try again."
            ) from e

        if not records:
            self.state = previous
            raise ReferenceDatabaseUnavailableError(
                "Rebuild produced no records; the existing card database was kept."
            )

        self._install(records)

    def identify(self, source: ImageSource, assume_full_card: bool = False) -> IdentifyResult:
        """
        Identify a single capture

        Args:
            source: Frame or image (see image_processor.load_image)
            assume_full_card: True if the source is already cropped to the card

        Raises:
            InvalidSourceError: if the capture is empty or cannot be decoded
        """
        mode = CropMode.FULL_FRAME if assume_full_card else CropMode.CENTER_CROP
        return IdentifyResult.from_match(self._matcher.match(source, mode))

    def identify_binder_page(self, source: ImageSource) -> List[IdentifyResult]:
        """
        Identify every pocket of a binder page photo

        Each pocket is matched as a full card face; empty pockets come back
        unmatched.

        Returns:
            One IdentifyResult per pocket, row by row from the top left

        Raises:
            InvalidSourceError: if the page image is empty or cannot be decoded
        """
        pockets = split_binder_page(source)
        results = [IdentifyResult.from_match(self._matcher.match(pocket, CropMode.FULL_FRAME)) for pocket in pockets]
        logger.info(f"Binder page: {sum(r.matched for r in results)} of {len(results)} pockets identified")
        return results

    def _identify_frame(self, frame: np.ndarray, mode: CropMode) -> IdentifyResult:
        return IdentifyResult.from_match(self._matcher.match(frame, mode))

    def start_watching(
        self,
        frame_source: FrameSource,
        on_result: ResultCallback,
        interval: Optional[float] = None
    ) -> AutoScanner:
        """Start the auto-scan loop; must be called inside a running event loop."""
        self.stop_watching()
        self._scanner = AutoScanner(self._identify_frame, frame_source, cooldown=self.cooldown)
        self._scanner.start(on_result, interval or AUTO_SCAN_INTERVAL)
        return self._scanner

    def stop_watching(self):
        if self._scanner is not None:
            self._scanner.stop()
            self._scanner = None
