"""
AlgorithmVersion model — one weight vector per (algorithm_type, version).

Never deleted, only superseded. At most one row per algorithm_type has
is_active = true; the partial unique index enforces it at the store.
"""
import uuid

from sqlalchemy import (
    Column, Text, Integer, Float, Boolean, DateTime, JSON,
    Index, UniqueConstraint, text,
)
from sqlalchemy.sql import func

from gaeo_learning.database import Base, utcnow


def _new_id():
    return str(uuid.uuid4())


class AlgorithmVersion(Base):
    __tablename__ = 'algorithm_versions'
    __table_args__ = (
        UniqueConstraint('algorithm_type', 'version', name='uq_algorithm_version_type_version'),
        Index(
            'uq_algorithm_version_one_active', 'algorithm_type',
            unique=True,
            sqlite_where=text('is_active'),
            postgresql_where=text('is_active'),
        ),
        Index('ix_algorithm_versions_type_active', 'algorithm_type', 'is_active'),
    )

    id = Column(Text, primary_key=True, default=_new_id)
    algorithm_type = Column(Text, nullable=False)
    version = Column(Integer, nullable=False)
    weights = Column(JSON, nullable=False, default=dict)
    config = Column(JSON, default=dict)
    is_active = Column(Boolean, nullable=False, default=False)
    research_based = Column(Boolean, nullable=False, default=False)
    research_findings = Column(JSON, default=list)
    avg_accuracy = Column(Float, default=0.0)
    avg_error = Column(Float, default=0.0)
    total_tests = Column(Integer, default=0)
    improvement_rate = Column(Float, default=0.0)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    promoted_at = Column(DateTime(timezone=True), nullable=True)

    @property
    def performance(self):
        return {
            'avg_accuracy': self.avg_accuracy or 0.0,
            'avg_error': self.avg_error or 0.0,
            'total_tests': self.total_tests or 0,
            'improvement_rate': self.improvement_rate or 0.0,
        }

    @property
    def is_bootstrap(self):
        """True for the unsaved default returned before any version exists."""
        return not self.version

    def to_dict(self):
        return {
            'id': self.id,
            'algorithm_type': self.algorithm_type,
            'version': self.version,
            'weights': dict(self.weights or {}),
            'config': dict(self.config or {}),
            'is_active': bool(self.is_active),
            'research_based': bool(self.research_based),
            'research_findings': list(self.research_findings or []),
            'performance': self.performance,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'promoted_at': self.promoted_at.isoformat() if self.promoted_at else None,
        }
