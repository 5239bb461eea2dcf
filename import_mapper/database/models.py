"""SQLAlchemy models for the learning cache database."""

from sqlalchemy import Column, DateTime, Float, Index, Integer, String
from sqlalchemy.orm import declarative_base

from import_mapper.database.base import CacheEntry, utcnow

Base = declarative_base()


class FieldMappingCacheEntry(Base):
    """Confirmed mapping of a source-field fingerprint to a target field.

    One row per fingerprint; a newer confirmed mapping for the same
    fingerprint overwrites the row.
    """

    __tablename__ = "field_mapping_cache"

    id = Column(Integer, primary_key=True, autoincrement=True)
    fingerprint = Column(String(64), nullable=False, unique=True)
    shape_key = Column(String(64), nullable=False, index=True)
    source_name = Column(String(255), nullable=False)
    target_field = Column(String(255), nullable=False)
    observation_count = Column(Integer, default=1, nullable=False)
    last_confidence = Column(Float, nullable=False)
    strategy = Column(String(32), nullable=False)
    first_seen_at = Column(DateTime, default=utcnow, nullable=False)
    last_confirmed_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    __table_args__ = (
        Index("idx_strategy_confidence", "strategy", "last_confidence"),
    )

    def to_entry(self) -> CacheEntry:
        return CacheEntry(
            fingerprint=self.fingerprint,
            shape_key=self.shape_key,
            source_name=self.source_name,
            target_field=self.target_field,
            observation_count=self.observation_count,
            last_confidence=self.last_confidence,
            strategy=self.strategy,
            first_seen_at=self.first_seen_at,
            last_confirmed_at=self.last_confirmed_at,
        )

    def apply(self, entry: CacheEntry) -> None:
        self.shape_key = entry.shape_key
        self.source_name = entry.source_name
        self.target_field = entry.target_field
        self.observation_count = entry.observation_count
        self.last_confidence = entry.last_confidence
        self.strategy = entry.strategy
        self.first_seen_at = entry.first_seen_at
        self.last_confirmed_at = entry.last_confirmed_at

    def __repr__(self):
        return f"<FieldMappingCacheEntry(source={self.source_name}, target={self.target_field}, count={self.observation_count})>"
