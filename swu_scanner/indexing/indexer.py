"""
swu_scanner/indexing/indexer.py: Reference database build pipeline

- Lists every print of every known set from the catalog
- Downloads each print's front artwork (already a clean card face)
- Computes the dHash fingerprint in full-frame mode
- Persists the (identity -> fingerprint) records

Failures are isolated: a set whose listing fails is skipped, and a print whose
artwork cannot be fetched or decoded is dropped. Neither aborts the build.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from swu_scanner.config import HASH_BATCH_SIZE
from swu_scanner.database.db import FingerprintStore
from swu_scanner.indexing.image_processor import CropMode
from swu_scanner.indexing.phash import hash_image
from swu_scanner.indexing.records import FingerprintRecord
from swu_scanner.utils.catalog import CatalogCard, SwuDbCatalog
from swu_scanner.utils.fetch import Fetcher

logger = logging.getLogger(__name__)


class ProgressPhase(str, Enum):
    """Phase of a reference database load or build"""
    LOADING = "loading"
    FETCHING_CATALOG = "fetching_catalog"
    HASHING = "hashing"
    SAVING = "saving"
    READY = "ready"


@dataclass(frozen=True)
class ProgressEvent:
    """Progress update for a long-running load or build"""
    phase: ProgressPhase
    percent: int
    message: str


ProgressCallback = Callable[[ProgressEvent], None]


def emit_progress(progress: Optional[ProgressCallback], phase: ProgressPhase, percent: int, message: str):
    if progress is not None:
        progress(ProgressEvent(phase=phase, percent=percent, message=message))


class ReferenceIndexer:
    """Builds the reference fingerprint database from the card catalog."""

    def __init__(
        self,
        catalog: SwuDbCatalog,
        fetcher: Fetcher,
        store: FingerprintStore,
        batch_size: int = HASH_BATCH_SIZE
    ):
        """
        Initialize indexer

        Args:
            catalog: Catalog source listing prints per set
            fetcher: Fetcher used to download artwork
            store: Durable store the finished records are written to
            batch_size: Number of artworks fetched and hashed concurrently
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.catalog = catalog
        self.fetcher = fetcher
        self.store = store
        self.batch_size = batch_size

    async def collect_cards(
        self,
        set_codes: List[str],
        progress: Optional[ProgressCallback] = None
    ) -> List[CatalogCard]:
        """
        List all prints of the given sets, in set order

        A set whose listing fails is logged and skipped.
        """
        cards = []
        for i, set_code in enumerate(set_codes):
            emit_progress(
                progress, ProgressPhase.FETCHING_CATALOG,
                round(i / len(set_codes) * 20),
                f"Fetching {set_code} card list..."
            )
            try:
                cards.extend(await self.catalog.list_cards(set_code))
            except Exception as e:
                logger.warning(f"Failed to fetch set {set_code}: {e}")

        return cards

    async def hash_card(self, card: CatalogCard) -> FingerprintRecord:
        """Fetch one print's artwork and compute its fingerprint."""
        data = await self.fetcher.fetch_bytes(card.artwork_url)
        fingerprint = hash_image(data, CropMode.FULL_FRAME)
        return FingerprintRecord(identity=card.identity(), fingerprint=fingerprint)

    async def hash_cards(
        self,
        cards: List[CatalogCard],
        progress: Optional[ProgressCallback] = None
    ) -> List[FingerprintRecord]:
        """
        Hash cards in fixed-size batches

        Batches run one after another; items within a batch run concurrently
        and the next batch starts only once every item has settled.
        """
        records = []
        failed = 0
        total = len(cards)
        num_batches = (total + self.batch_size - 1) // self.batch_size

        for batch_idx in range(num_batches):
            batch = cards[batch_idx * self.batch_size:(batch_idx + 1) * self.batch_size]

            results = await asyncio.gather(
                *(self.hash_card(card) for card in batch),
                return_exceptions=True
            )

            for card, result in zip(batch, results):
                if isinstance(result, FingerprintRecord):
                    records.append(result)
                elif isinstance(result, Exception):
                    failed += 1
                    logger.warning(f"Skipping {card.set_code}-{card.collector_number} ({card.name}): {result}")
                else:
                    raise result

            processed = min((batch_idx + 1) * self.batch_size, total)
            emit_progress(
                progress, ProgressPhase.HASHING,
                20 + round(processed / total * 75),
                f"Hashing cards... {processed}/{total}"
            )

        if failed:
            logger.warning(f"{failed} of {total} artworks could not be hashed")

        return records

    async def build(
        self,
        set_codes: Optional[List[str]] = None,
        progress: Optional[ProgressCallback] = None,
        replace: bool = False
    ) -> List[FingerprintRecord]:
        """
        Build and persist the reference database

        The build meta records every set the catalog knew about at build
        time, so indexing a subset does not make the store look stale later.

        Args:
            set_codes: Sets to index (default: every set the catalog knows)
            progress: Optional callable receiving ProgressEvents
            replace: Swap out all previously stored records instead of
                upserting; only happens once the new records are ready

        Returns:
            All successfully hashed records
        """
        known_sets = self.catalog.set_codes()
        set_codes = list(set_codes) if set_codes is not None else known_sets
        logger.info(f"Building reference database for {len(set_codes)} sets")

        cards = await self.collect_cards(set_codes, progress)

        hashable = [card for card in cards if card.artwork_url]
        if len(hashable) < len(cards):
            logger.info(f"{len(cards) - len(hashable)} prints have no artwork, skipped")

        emit_progress(progress, ProgressPhase.HASHING, 20, f"Hashing {len(hashable)} cards...")
        records = await self.hash_cards(hashable, progress)

        if not records:
            logger.warning("No fingerprints computed, nothing persisted")
            return records

        emit_progress(progress, ProgressPhase.SAVING, 96, "Saving card database...")
        if replace:
            self.store.replace_all(records)
        else:
            self.store.put_many(records)
        self.store.put_meta(known_sets + [c for c in set_codes if c not in known_sets], self.store.count())

        logger.info(f"Reference database built: {len(records)} cards indexed")
        emit_progress(progress, ProgressPhase.READY, 100, f"Ready! {len(records)} cards indexed.")
        return records

    async def rebuild(
        self,
        set_codes: Optional[List[str]] = None,
        progress: Optional[ProgressCallback] = None
    ) -> List[FingerprintRecord]:
        """Build from scratch, replacing every persisted record once done."""
        logger.info("Rebuilding reference database")
        return await self.build(set_codes, progress, replace=True)
