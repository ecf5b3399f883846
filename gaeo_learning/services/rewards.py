"""
Reward pipeline — spans, rewards, prompt template stats, daily learning metrics.

Per interaction: prompt span -> response span -> reward evaluated -> metrics
updated. Every step is best-effort; ingestion goes through a BestEffortChannel
and storage failures are logged, never raised to the request path.

Running means are updated with single UPDATE statements computed from the
row's own columns, so concurrent writers cannot lose increments:

    avg' = (avg * n + value) / (n + 1),  n' = n + 1
"""
import logging
import string
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy import func, update

from gaeo_learning.config import AGENT_TYPES, REWARD_QUEUE_MAXSIZE, SPAN_TYPES, load_learning_config
from gaeo_learning.database import utcnow
from gaeo_learning.errors import LearningEngineError, NotFound, PersistenceError, ValidationError
from gaeo_learning.models.agent_reward import AgentReward
from gaeo_learning.models.learning_metric import LearningMetricDaily
from gaeo_learning.models.prompt_template import PromptTemplate
from gaeo_learning.services.channel import BestEffortChannel
from gaeo_learning.services.evaluator import ResponseQualityEvaluator, Reward

logger = logging.getLogger('services.rewards')

_METADATA_TYPES = (str, int, float, bool, type(None))


def validate_agent_type(agent_type):
    if agent_type not in AGENT_TYPES:
        raise ValidationError(
            f"Unknown agent type '{agent_type}' (expected one of {', '.join(AGENT_TYPES)})"
        )
    return agent_type


@dataclass
class SpanEvent:
    """One half of an agent interaction. Metadata values are JSON scalars."""
    span_type: str
    agent_type: str
    text: str = ''
    metadata: Dict[str, Any] = field(default_factory=dict)
    prompt_template_id: Optional[str] = None
    conversation_id: Optional[str] = None

    def __post_init__(self):
        if self.span_type not in SPAN_TYPES:
            raise ValidationError(f"Unknown span type '{self.span_type}'")
        validate_agent_type(self.agent_type)
        if not isinstance(self.text, str):
            raise ValidationError("span text must be a string")
        if not isinstance(self.metadata, dict):
            raise ValidationError("span metadata must be a mapping")
        for key, value in self.metadata.items():
            if not isinstance(key, str) or not isinstance(value, _METADATA_TYPES):
                raise ValidationError(f"span metadata '{key}' must be a string/number/bool/null")

    def payload(self):
        return {'text': self.text, 'metadata': dict(self.metadata)}


class _KeepMissing(dict):
    def __missing__(self, key):
        return '{' + key + '}'


def render_template(template, variables=None):
    """str.format with unknown placeholders left as-is."""
    try:
        return string.Formatter().vformat(template, (), _KeepMissing(variables or {}))
    except (ValueError, IndexError, AttributeError, KeyError):
        logger.warning("Template could not be rendered, returning it raw")
        return template


def template_variables(template):
    names = []
    try:
        for _, name, _, _ in string.Formatter().parse(template):
            if name and name not in names:
                names.append(name)
    except ValueError:
        return []
    return names


def _day_bounds(day):
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class RewardPipeline:

    def __init__(self, store, evaluator=None, channel=None, config=None):
        self.store = store
        self.evaluator = evaluator or ResponseQualityEvaluator()
        self.channel = channel or BestEffortChannel('rewards', maxsize=REWARD_QUEUE_MAXSIZE)
        config = config or load_learning_config()
        rewards = config.get('rewards', {})
        self.success_threshold = float(rewards.get('success_threshold', 70))
        self.min_template_uses = int(rewards.get('min_template_uses', 5))
        self.default_prompts = dict(config.get('default_prompts', {}))

    # ── Templates ────────────────────────────────────────────────────────────

    def create_template(self, agent_type, template, variables=None):
        """Store the next template version for an agent type."""
        validate_agent_type(agent_type)
        if not isinstance(template, str) or not template.strip():
            raise ValidationError("template text is required")

        with self.store.session() as session:
            current_max = session.query(func.max(PromptTemplate.version)).filter(
                PromptTemplate.agent_type == agent_type,
            ).scalar()
            row = PromptTemplate(
                agent_type=agent_type,
                template=template,
                variables=list(variables) if variables is not None else template_variables(template),
                version=(current_max or 0) + 1,
                avg_score=0.0,
                total_uses=0,
                success_rate=0.0,
            )
            session.add(row)

        logger.info("Created %s prompt template v%d", agent_type, row.version,
                    extra={'agent_type': agent_type, 'version': row.version})
        return row

    def get_template(self, template_id):
        with self.store.session() as session:
            row = session.get(PromptTemplate, template_id)
        if row is None:
            raise NotFound('template', template_id)
        return row

    def list_templates(self, agent_type):
        validate_agent_type(agent_type)
        with self.store.session() as session:
            return (
                session.query(PromptTemplate)
                .filter(PromptTemplate.agent_type == agent_type)
                .order_by(PromptTemplate.version.asc())
                .all()
            )

    def _best_in_session(self, session, agent_type):
        return (
            session.query(PromptTemplate)
            .filter(
                PromptTemplate.agent_type == agent_type,
                PromptTemplate.total_uses >= self.min_template_uses,
            )
            .order_by(PromptTemplate.avg_score.desc(), PromptTemplate.version.desc())
            .first()
        )

    def best_template(self, agent_type):
        """Highest avg_score among templates with enough uses, or None."""
        validate_agent_type(agent_type)
        try:
            with self.store.session() as session:
                return self._best_in_session(session, agent_type)
        except PersistenceError:
            logger.error("Failed to load best %s template", agent_type, exc_info=True)
            return None

    def get_optimized_prompt(self, agent_type, variables=None):
        """Best template rendered with variables, else the configured default. Never raises."""
        if agent_type not in AGENT_TYPES:
            logger.warning("No prompt for unknown agent type '%s'", agent_type)
            return ''
        best = self.best_template(agent_type)
        text = best.template if best is not None else self.default_prompts.get(agent_type, '')
        return render_template(text, variables)

    # ── Ingestion ────────────────────────────────────────────────────────────

    def emit_span(self, event):
        """Queue a span for persistence. Returns False if it was rejected or dropped."""
        try:
            if isinstance(event, dict):
                event = SpanEvent(**event)
            elif not isinstance(event, SpanEvent):
                raise ValidationError(f"Expected SpanEvent, got {type(event).__name__}")
        except (ValidationError, TypeError) as e:
            logger.warning("Dropping invalid span: %s", e)
            return False
        return self.channel.submit(self.record_span, event)

    def record_span(self, event):
        with self.store.session() as session:
            row = AgentReward(
                agent_type=event.agent_type,
                span_type=event.span_type,
                prompt_template_id=event.prompt_template_id,
                conversation_id=event.conversation_id,
                payload=event.payload(),
            )
            session.add(row)
        return row

    def evaluate_response(self, agent_type, response_text, context=None) -> Reward:
        validate_agent_type(agent_type)
        return self.evaluator.evaluate(agent_type, response_text, context or {})

    def emit_reward(self, reward, prompt_template_id=None, response_text='',
                    conversation_id=None):
        """Queue reward persistence + aggregate updates. Never raises."""
        if not isinstance(reward, Reward):
            logger.warning("Dropping reward of type %s", type(reward).__name__)
            return False
        return self.channel.submit(
            self.record_reward, reward,
            prompt_template_id=prompt_template_id,
            response_text=response_text,
            conversation_id=conversation_id,
        )

    def record_reward(self, reward, prompt_template_id=None, response_text='',
                      conversation_id=None):
        """
        Attach the reward to the interaction's response span and fold the score
        into the template stats and today's bucket, all in one transaction.

        The newest unscored response span of the same conversation and agent
        receives the reward fields; a new response row is inserted only when
        there is none. Failures are logged and the reward is dropped.
        """
        success = 1.0 if reward.score > self.success_threshold else 0.0
        today = utcnow().date()
        try:
            with self.store.session() as session:
                row = self._attach_to_response_span(
                    session, reward, prompt_template_id, response_text, conversation_id,
                )
                if row is None:
                    row = AgentReward(
                        agent_type=reward.agent_type,
                        span_type='response',
                        prompt_template_id=prompt_template_id,
                        conversation_id=conversation_id,
                        payload={'text': response_text or '', 'feedback': reward.feedback},
                        score=reward.score,
                        relevance=reward.relevance,
                        accuracy=reward.accuracy,
                        usefulness=reward.usefulness,
                    )
                    session.add(row)

                if prompt_template_id:
                    n = PromptTemplate.total_uses
                    result = session.execute(
                        update(PromptTemplate)
                        .where(PromptTemplate.id == prompt_template_id)
                        .values(
                            avg_score=(PromptTemplate.avg_score * n + reward.score) / (n + 1),
                            success_rate=(PromptTemplate.success_rate * n + success) / (n + 1),
                            total_uses=n + 1,
                            last_updated=utcnow(),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 0:
                        logger.warning("Reward for unknown template %s", prompt_template_id)

                self._ensure_bucket(session, reward.agent_type, today)
                m = LearningMetricDaily
                session.execute(
                    update(m)
                    .where(m.agent_type == reward.agent_type, m.date == today)
                    .values(
                        avg_reward=(m.avg_reward * m.total_spans + reward.score) / (m.total_spans + 1),
                        total_spans=m.total_spans + 1,
                        updated_at=utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                self._refresh_bucket_derived(session, reward.agent_type, today)
        except LearningEngineError:
            logger.error("Failed to record %s reward", reward.agent_type, exc_info=True,
                         extra={'agent_type': reward.agent_type})
            return None
        return row

    @staticmethod
    def _attach_to_response_span(session, reward, prompt_template_id, response_text,
                                 conversation_id):
        """Fill the reward fields on an existing unscored response span. None if there is none."""
        if not conversation_id:
            return None
        span = (
            session.query(AgentReward)
            .filter(
                AgentReward.agent_type == reward.agent_type,
                AgentReward.conversation_id == conversation_id,
                AgentReward.span_type == 'response',
                AgentReward.score.is_(None),
            )
            .order_by(AgentReward.created_at.desc())
            .first()
        )
        if span is None:
            return None

        payload = dict(span.payload or {})
        if response_text and not payload.get('text'):
            payload['text'] = response_text
        payload['feedback'] = reward.feedback
        # Conditional on score IS NULL: two rewards racing for one span cannot both land on it.
        claimed = session.execute(
            update(AgentReward)
            .where(AgentReward.id == span.id, AgentReward.score.is_(None))
            .values(
                score=reward.score,
                relevance=reward.relevance,
                accuracy=reward.accuracy,
                usefulness=reward.usefulness,
                prompt_template_id=span.prompt_template_id or prompt_template_id,
                payload=payload,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        if not claimed:
            return None
        session.refresh(span)
        return span

    # ── Daily metrics ────────────────────────────────────────────────────────

    @staticmethod
    def _ensure_bucket(session, agent_type, day):
        """Insert an empty (agent_type, day) bucket unless one exists."""
        values = {'agent_type': agent_type, 'date': day, 'total_spans': 0,
                  'avg_reward': 0.0, 'improvement_rate': 0.0}
        dialect = session.get_bind().dialect.name
        if dialect == 'postgresql':
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == 'sqlite':
            from sqlalchemy.dialects.sqlite import insert
        else:
            exists = session.query(LearningMetricDaily.id).filter(
                LearningMetricDaily.agent_type == agent_type,
                LearningMetricDaily.date == day,
            ).first()
            if exists is None:
                session.add(LearningMetricDaily(**values))
                session.flush()
            return
        session.execute(
            insert(LearningMetricDaily).values(**values)
            .on_conflict_do_nothing(index_elements=['agent_type', 'date'])
        )

    def _refresh_bucket_derived(self, session, agent_type, day):
        """improvement_rate vs. the previous bucket; best_prompt_version from templates."""
        m = LearningMetricDaily
        current = session.query(m.avg_reward).filter(
            m.agent_type == agent_type, m.date == day,
        ).scalar()
        previous = session.query(m.avg_reward).filter(
            m.agent_type == agent_type, m.date < day,
        ).order_by(m.date.desc()).limit(1).scalar()

        rate = 0.0
        if current is not None and previous:
            rate = max(-1.0, min(1.0, (current - previous) / previous))

        best = self._best_in_session(session, agent_type)
        session.execute(
            update(m)
            .where(m.agent_type == agent_type, m.date == day)
            .values(
                improvement_rate=round(rate, 4),
                best_prompt_version=best.version if best is not None else None,
            )
            .execution_options(synchronize_session=False)
        )

    def recompute_daily_metrics(self, agent_type, day=None):
        """Rebuild one bucket from the stored rewards and templates."""
        validate_agent_type(agent_type)
        day = day or utcnow().date()
        start, end = _day_bounds(day)
        with self.store.session() as session:
            count, avg = session.query(
                func.count(AgentReward.id), func.avg(AgentReward.score),
            ).filter(
                AgentReward.agent_type == agent_type,
                AgentReward.span_type == 'response',
                AgentReward.score.isnot(None),
                AgentReward.created_at >= start,
                AgentReward.created_at < end,
            ).one()

            self._ensure_bucket(session, agent_type, day)
            session.execute(
                update(LearningMetricDaily)
                .where(LearningMetricDaily.agent_type == agent_type, LearningMetricDaily.date == day)
                .values(total_spans=count or 0, avg_reward=float(avg or 0.0), updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            self._refresh_bucket_derived(session, agent_type, day)
            bucket = session.query(LearningMetricDaily).filter(
                LearningMetricDaily.agent_type == agent_type,
                LearningMetricDaily.date == day,
            ).one()

        logger.info("Recomputed %s metrics for %s: %d rewards", agent_type, day, bucket.total_spans)
        return bucket

    def get_learning_metrics(self, agent_type, days=30):
        """Daily buckets, newest first. Empty list if the store is unavailable."""
        validate_agent_type(agent_type)
        cutoff = utcnow().date() - timedelta(days=days)
        try:
            with self.store.session() as session:
                return (
                    session.query(LearningMetricDaily)
                    .filter(
                        LearningMetricDaily.agent_type == agent_type,
                        LearningMetricDaily.date >= cutoff,
                    )
                    .order_by(LearningMetricDaily.date.desc())
                    .all()
                )
        except PersistenceError:
            logger.error("Failed to load %s learning metrics", agent_type, exc_info=True)
            return []

    def close(self, timeout=5.0):
        self.channel.close(timeout)
