"""
PromptTemplate model — one prompt variant per (agent_type, version).
"""
import uuid

from sqlalchemy import Column, Text, Integer, Float, DateTime, JSON, UniqueConstraint
from sqlalchemy.sql import func

from gaeo_learning.database import Base, utcnow


class PromptTemplate(Base):
    __tablename__ = 'prompt_templates'
    __table_args__ = (
        UniqueConstraint('agent_type', 'version', name='uq_prompt_template_agent_version'),
    )

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    agent_type = Column(Text, nullable=False)
    template = Column(Text, nullable=False)
    variables = Column(JSON, default=list)
    version = Column(Integer, nullable=False)
    avg_score = Column(Float, nullable=False, default=0.0)
    total_uses = Column(Integer, nullable=False, default=0)
    success_rate = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    last_updated = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'agent_type': self.agent_type,
            'template': self.template,
            'variables': list(self.variables or []),
            'version': self.version,
            'avg_score': self.avg_score,
            'total_uses': self.total_uses,
            'success_rate': self.success_rate,
        }
