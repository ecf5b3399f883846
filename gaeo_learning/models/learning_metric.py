"""
LearningMetricDaily model — daily reward rollup per agent type.

A cache over agent_rewards + prompt_templates; recomputable at any time.
"""
from sqlalchemy import Column, Integer, Text, Float, Date, DateTime, UniqueConstraint
from sqlalchemy.sql import func

from gaeo_learning.database import Base, utcnow


class LearningMetricDaily(Base):
    __tablename__ = 'learning_metrics'
    __table_args__ = (
        UniqueConstraint('agent_type', 'date', name='uq_learning_metric_agent_date'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    agent_type = Column(Text, nullable=False)
    date = Column(Date, nullable=False)
    total_spans = Column(Integer, nullable=False, default=0)
    avg_reward = Column(Float, nullable=False, default=0.0)
    improvement_rate = Column(Float, nullable=False, default=0.0)
    best_prompt_version = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow)

    def to_dict(self):
        return {
            'agent_type': self.agent_type,
            'date': self.date.isoformat() if self.date else None,
            'total_spans': self.total_spans,
            'avg_reward': self.avg_reward,
            'improvement_rate': self.improvement_rate,
            'best_prompt_version': self.best_prompt_version,
        }
