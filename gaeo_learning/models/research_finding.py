"""
ResearchFinding model — external knowledge that may become a new version.

applied flips false → true exactly once; applied_version_id is a weak
reference into algorithm_versions (no FK, the finding does not own it).
"""
import uuid

from sqlalchemy import Column, Text, Boolean, DateTime, JSON, Index
from sqlalchemy.sql import func

from gaeo_learning.database import Base, utcnow


class ResearchFinding(Base):
    __tablename__ = 'research_findings'
    __table_args__ = (
        Index('ix_research_findings_type_applied', 'algorithm_type', 'applied'),
    )

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(Text, nullable=False)
    source = Column(Text, nullable=False)
    url = Column(Text, nullable=True)
    published_date = Column(Text, nullable=True)
    algorithm_type = Column(Text, nullable=False)
    suggested_weight_delta = Column(JSON, nullable=True)
    impacts = Column(JSON, nullable=True)  # [{factor, impact, confidence, description}]
    applied = Column(Boolean, nullable=False, default=False)
    applied_at = Column(DateTime(timezone=True), nullable=True)
    applied_version_id = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'source': self.source,
            'url': self.url,
            'published_date': self.published_date,
            'algorithm_type': self.algorithm_type,
            'suggested_weight_delta': self.suggested_weight_delta,
            'impacts': self.impacts,
            'applied': bool(self.applied),
            'applied_at': self.applied_at.isoformat() if self.applied_at else None,
            'applied_version_id': self.applied_version_id,
        }
