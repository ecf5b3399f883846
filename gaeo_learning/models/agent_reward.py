"""
AgentReward model — one row per interaction half (prompt span, response span).

Reward columns are filled only on evaluated response spans.
"""
import uuid

from sqlalchemy import Column, Text, Float, DateTime, JSON, Index
from sqlalchemy.sql import func

from gaeo_learning.database import Base, utcnow


class AgentReward(Base):
    __tablename__ = 'agent_rewards'
    __table_args__ = (
        Index('ix_agent_rewards_agent_created', 'agent_type', 'created_at'),
        Index('ix_agent_rewards_template', 'prompt_template_id'),
    )

    id = Column(Text, primary_key=True, default=lambda: str(uuid.uuid4()))
    agent_type = Column(Text, nullable=False)
    span_type = Column(Text, nullable=False)  # 'prompt' | 'response'
    prompt_template_id = Column(Text, nullable=True)
    conversation_id = Column(Text, nullable=True)
    payload = Column(JSON, nullable=False, default=dict)
    score = Column(Float, nullable=True)
    relevance = Column(Float, nullable=True)
    accuracy = Column(Float, nullable=True)
    usefulness = Column(Float, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now())
