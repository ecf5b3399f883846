"""
Analysis rewards — per-agent rewards derived from a finished content analysis.

Each scoring agent (seo, aeo, geo, plus aio when citation scores are given)
earns a reward in [-1, 1] from three signals:

    level        excellent (>= 80) +0.4, good (>= 60) +0.2, fair (>= 40) 0, poor -0.2
    improvement  % change vs the previous analysis:  >10 +0.3, >5 +0.15, >0 +0.05
    benchmark    % above the benchmark score:        >20 +0.3, >10 +0.15, >0 +0.05

Negative changes mirror the positive tiers. The total is clamped to [-1, 1]
and mapped onto the 0-100 reward scale as (reward + 1) * 50, so analysis
rewards land in the same spans, template stats and daily buckets as graded
chat responses.
"""
import logging
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from gaeo_learning.config import load_learning_config
from gaeo_learning.errors import ValidationError
from gaeo_learning.services.evaluator import Reward, _score_field
from gaeo_learning.services.rewards import SpanEvent

logger = logging.getLogger('services.analysis_rewards')

SCORE_AGENTS = ('aeo', 'geo', 'seo')

LEVEL_POINTS = {'excellent': 0.4, 'good': 0.2, 'fair': 0.0, 'poor': -0.2}
IMPROVEMENT_TIERS = ((10.0, 0.3), (5.0, 0.15), (0.0, 0.05))
BENCHMARK_TIERS = ((20.0, 0.3), (10.0, 0.15), (0.0, 0.05))

DEFAULT_BENCHMARK = 50.0


def score_level(score):
    if score >= 80:
        return 'excellent'
    if score >= 60:
        return 'good'
    if score >= 40:
        return 'fair'
    return 'poor'


def percent_change(current, reference):
    """Relative change in percent. 0 when there is no usable reference."""
    if not reference:
        return 0.0
    return (current - reference) / reference * 100.0


def tier_points(percent, tiers):
    for bound, points in tiers:
        if percent > bound:
            return points
    for bound, points in tiers:
        if percent < -bound:
            return -points
    return 0.0


@dataclass
class AnalysisReward:
    analysis_id: str
    agent_type: str
    score: float
    reward: float
    previous_score: Optional[float]
    improvement: float
    benchmark: float
    benchmark_comparison: float
    score_level: str

    @property
    def reward_score(self):
        """The reward on the 0-100 scale, halves rounded up."""
        return int((self.reward + 1.0) * 50.0 + 0.5)

    def to_reward(self) -> Reward:
        return Reward(
            agent_type=self.agent_type,
            score=self.reward_score,
            relevance=self.score,
            accuracy=100.0 if self.improvement > 0 else 50.0,
            usefulness=100.0 if self.score_level in ('excellent', 'good') else 50.0,
            feedback=(
                f"{self.score_level} {self.score:.0f}/100, "
                f"{self.improvement:+.1f}% vs previous, "
                f"{self.benchmark_comparison:+.1f}% vs benchmark {self.benchmark:.0f}"
            ),
        )

    def metadata(self):
        data = asdict(self)
        data.pop('agent_type')
        data['reward_score'] = self.reward_score
        return data


def calculate_analysis_reward(analysis_id, agent_type, score, previous_score=None,
                              benchmark=DEFAULT_BENCHMARK) -> AnalysisReward:
    score = _score_field(score, f'{agent_type} score')
    if previous_score is not None:
        previous_score = _score_field(previous_score, f'previous {agent_type} score')
    benchmark = _score_field(benchmark, f'{agent_type} benchmark')

    level = score_level(score)
    improvement = percent_change(score, previous_score)
    comparison = percent_change(score, benchmark)

    total = (
        LEVEL_POINTS[level]
        + tier_points(improvement, IMPROVEMENT_TIERS)
        + tier_points(comparison, BENCHMARK_TIERS)
    )
    return AnalysisReward(
        analysis_id=analysis_id,
        agent_type=agent_type,
        score=score,
        reward=round(max(-1.0, min(1.0, total)), 4),
        previous_score=previous_score,
        improvement=round(improvement, 4),
        benchmark=benchmark,
        benchmark_comparison=round(comparison, 4),
        score_level=level,
    )


class AnalysisRewardCalculator:
    """Computes analysis rewards and stores them through a RewardPipeline."""

    def __init__(self, rewards, config=None):
        self.rewards = rewards
        config = config or load_learning_config()
        self.default_benchmark = float(
            config.get('rewards', {}).get('analysis_benchmark', DEFAULT_BENCHMARK)
        )

    def calculate(self, analysis_id, scores, previous=None, aio_scores=None,
                  benchmarks=None) -> Dict[str, AnalysisReward]:
        """
        Rewards for one analysis, keyed by agent type.

        Args:
            scores: {'aeo': .., 'geo': .., 'seo': ..}; any subset, at least one
            previous: the same keys from the previous analysis of the URL
            aio_scores: per-model citation scores; their mean is the aio score
            benchmarks: per-agent benchmark overrides, e.g. recent averages
                kept by the caller; missing agents use the configured default
        """
        if not isinstance(analysis_id, str) or not analysis_id:
            raise ValidationError("analysis_id is required")
        if not isinstance(scores, dict):
            raise ValidationError("scores must be a mapping of agent type to score")
        unknown = set(scores) - set(SCORE_AGENTS)
        if unknown:
            raise ValidationError(f"Unknown score keys: {', '.join(sorted(unknown))}")

        current = {agent: scores[agent] for agent in SCORE_AGENTS if agent in scores}
        if aio_scores:
            if not isinstance(aio_scores, dict):
                raise ValidationError("aio_scores must be a mapping of model to score")
            values = [_score_field(v, 'aio citation score') for v in aio_scores.values()]
            current['aio'] = sum(values) / len(values)
        if not current:
            raise ValidationError("At least one score is required")

        previous = previous or {}
        benchmarks = benchmarks or {}
        return {
            agent: calculate_analysis_reward(
                analysis_id, agent, score,
                previous_score=previous.get(agent),
                benchmark=benchmarks.get(agent, self.default_benchmark),
            )
            for agent, score in current.items()
        }

    def record(self, analysis_id, scores, previous=None, aio_scores=None, benchmarks=None):
        """Calculate and store synchronously; returns the rewards by agent type."""
        computed = self.calculate(analysis_id, scores, previous=previous,
                                  aio_scores=aio_scores, benchmarks=benchmarks)
        self._store(computed)
        return computed

    def emit(self, analysis_id, scores, previous=None, aio_scores=None, benchmarks=None):
        """Calculate now, store on the reward channel. Never raises."""
        try:
            computed = self.calculate(analysis_id, scores, previous=previous,
                                      aio_scores=aio_scores, benchmarks=benchmarks)
        except ValidationError as e:
            logger.warning("Dropping analysis rewards for %s: %s", analysis_id, e)
            return False
        return self.rewards.channel.submit(self._store, computed)

    def _store(self, computed):
        for agent, result in computed.items():
            # The span is filled in by record_reward through the shared conversation id.
            self.rewards.record_span(SpanEvent(
                'response', agent,
                text=f"{agent} analysis score {result.score:.0f}",
                metadata=result.metadata(),
                conversation_id=result.analysis_id,
            ))
            self.rewards.record_reward(result.to_reward(), conversation_id=result.analysis_id)
            logger.info("Analysis %s %s reward %.2f (%s)", result.analysis_id, agent,
                        result.reward, result.score_level, extra={'agent_type': agent})
