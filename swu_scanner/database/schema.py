"""
swu_scanner/database/schema.py: Database schema definitions using SQLAlchemy
"""

from sqlalchemy import create_engine, Column, Integer, String, DateTime, JSON
from sqlalchemy.orm import declarative_base, sessionmaker
from datetime import datetime

from swu_scanner.config import DATABASE_PATH

Base = declarative_base()


class CardHash(Base):
    """Reference fingerprint for one card print."""
    __tablename__ = "card_hashes"

    key = Column(String(50), primary_key=True)  # "<set_code>-<collector_number>"
    set_code = Column(String(10), nullable=False, index=True)
    collector_number = Column(String(20), nullable=False)
    display_name = Column(String(255), nullable=False, index=True)
    subtitle = Column(String(255), nullable=False, default='')
    variant_label = Column(String(50), nullable=False, default='Normal')
    fingerprint = Column(String(64), nullable=False)  # 64 chars of '0'/'1'
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<CardHash(key={self.key}, name='{self.display_name}', variant='{self.variant_label}')>"


class BuildMeta(Base):
    """Metadata about the last reference database build (single row)."""
    __tablename__ = "build_meta"

    id = Column(Integer, primary_key=True)
    set_codes = Column(JSON, nullable=False)
    record_count = Column(Integer, nullable=False, default=0)
    built_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<BuildMeta(sets={len(self.set_codes or [])}, records={self.record_count})>"


def create_session_factory(database_url: str):
    """Create engine and tables for a database URL and return a session factory."""
    db_engine = create_engine(database_url, echo=False)
    Base.metadata.create_all(bind=db_engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


# Database engine and session factory
engine = create_engine(f"sqlite:///{DATABASE_PATH}", echo=False)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db():
    """Initialize database - create all tables."""
    Base.metadata.create_all(bind=engine)
