"""
swu_scanner/database/db.py: SQLite database operations
Durable store for reference fingerprints and build metadata
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional
import logging

from sqlalchemy.orm import Session

from swu_scanner.database.schema import BuildMeta, CardHash, SessionLocal, init_db
from swu_scanner.indexing.records import FingerprintRecord

logger = logging.getLogger(__name__)

_META_ID = 1


@contextmanager
def transaction(db: Session):
    """
    Context manager for database transactions
    Automatically commits on success, rolls back on exception

    Usage:
        with transaction(db):
            db.add(some_object)
            # Commit happens automatically on exit
    """
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise


def _record_to_row(record: FingerprintRecord) -> CardHash:
    return CardHash(**record.to_row())


def _row_to_record(row: CardHash) -> FingerprintRecord:
    return FingerprintRecord.from_row({
        'set_code': row.set_code,
        'collector_number': row.collector_number,
        'display_name': row.display_name,
        'subtitle': row.subtitle,
        'variant_label': row.variant_label,
        'fingerprint': row.fingerprint,
    })


class FingerprintStore:
    """Key-value store of FingerprintRecords keyed by <set>-<number>."""

    def __init__(self, session_factory=None):
        """
        Args:
            session_factory: sessionmaker to use (default: SessionLocal on DATABASE_PATH)
        """
        if session_factory is None:
            init_db()
            session_factory = SessionLocal
        self.session_factory = session_factory

    def count(self) -> int:
        with self.session_factory() as db:
            return db.query(CardHash).count()

    def get_all(self) -> List[FingerprintRecord]:
        with self.session_factory() as db:
            return [_row_to_record(row) for row in db.query(CardHash).all()]

    def get(self, key: str) -> Optional[FingerprintRecord]:
        with self.session_factory() as db:
            row = db.query(CardHash).filter(CardHash.key == key).first()
            return _row_to_record(row) if row else None

    def put_many(self, records: Iterable[FingerprintRecord]) -> int:
        """
        Upsert records by key; the last record for a repeated key wins

        Returns:
            Number of distinct keys written
        """
        return self._write(records, replace=False)

    def replace_all(self, records: Iterable[FingerprintRecord]) -> int:
        """
        Swap the stored fingerprints for `records` in one transaction

        Nothing is deleted if writing fails.

        Returns:
            Number of distinct keys written
        """
        return self._write(records, replace=True)

    def _write(self, records: Iterable[FingerprintRecord], replace: bool) -> int:
        by_key = {}
        for record in records:
            by_key[record.key] = record

        with self.session_factory() as db:
            with transaction(db):
                if replace:
                    db.query(CardHash).delete()
                for record in by_key.values():
                    db.merge(_record_to_row(record))

        logger.info(f"Stored {len(by_key)} fingerprints" + (" (replaced previous set)" if replace else ""))
        return len(by_key)

    def clear(self):
        """Delete all fingerprints and build metadata"""
        with self.session_factory() as db:
            with transaction(db):
                deleted = db.query(CardHash).delete()
                db.query(BuildMeta).delete()
        logger.info(f"Cleared {deleted} fingerprints")

    def get_meta(self) -> Optional[Dict[str, Any]]:
        """Metadata of the last build, or None if never built"""
        with self.session_factory() as db:
            meta = db.get(BuildMeta, _META_ID)
            if meta is None:
                return None
            return {
                'set_codes': list(meta.set_codes or []),
                'record_count': meta.record_count,
                'built_at': meta.built_at,
            }

    def put_meta(self, set_codes: List[str], record_count: int):
        with self.session_factory() as db:
            with transaction(db):
                db.merge(BuildMeta(
                    id=_META_ID,
                    set_codes=list(set_codes),
                    record_count=record_count,
                    built_at=datetime.utcnow()
                ))
