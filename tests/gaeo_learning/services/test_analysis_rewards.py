"""Tests for gaeo_learning.services.analysis_rewards — rewards from analysis scores."""
import pytest

from gaeo_learning.errors import ValidationError
from gaeo_learning.models.agent_reward import AgentReward
from gaeo_learning.services.analysis_rewards import (
    BENCHMARK_TIERS, IMPROVEMENT_TIERS, AnalysisRewardCalculator, calculate_analysis_reward,
    percent_change, score_level, tier_points,
)


@pytest.fixture
def calculator(rewards, learning_config):
    return AnalysisRewardCalculator(rewards, config=learning_config)


def _spans(store, **filters):
    with store.session() as session:
        query = session.query(AgentReward)
        for key, value in filters.items():
            query = query.filter(getattr(AgentReward, key) == value)
        return query.all()


class TestScoring:

    @pytest.mark.parametrize('score, level', [
        (100, 'excellent'), (80, 'excellent'), (79.9, 'good'), (60, 'good'),
        (40, 'fair'), (39, 'poor'), (0, 'poor'),
    ])
    def test_score_level(self, score, level):
        assert score_level(score) == level

    @pytest.mark.parametrize('percent, points', [
        (11, 0.3), (10, 0.15), (6, 0.15), (5, 0.05), (0.1, 0.05), (0, 0.0),
        (-0.1, -0.05), (-5, -0.05), (-6, -0.15), (-10, -0.15), (-11, -0.3),
    ])
    def test_improvement_tiers(self, percent, points):
        assert tier_points(percent, IMPROVEMENT_TIERS) == points

    def test_benchmark_tiers_are_wider(self):
        assert tier_points(15, BENCHMARK_TIERS) == 0.15
        assert tier_points(-25, BENCHMARK_TIERS) == -0.3

    def test_percent_change_without_reference(self):
        assert percent_change(70, None) == 0.0
        assert percent_change(70, 0) == 0.0
        assert percent_change(75, 50) == pytest.approx(50.0)


class TestCalculateAnalysisReward:

    def test_strong_improving_score_maxes_out(self):
        result = calculate_analysis_reward('an-1', 'seo', 85, previous_score=70)
        assert result.score_level == 'excellent'
        assert result.improvement == pytest.approx(21.4286)
        assert result.benchmark == 50.0
        assert result.benchmark_comparison == pytest.approx(70.0)
        assert result.reward == 1.0
        assert result.reward_score == 100

    def test_weak_declining_score(self):
        result = calculate_analysis_reward('an-1', 'geo', 30, previous_score=50)
        assert result.reward == pytest.approx(-0.8)
        assert result.reward_score == 10

    def test_first_analysis_has_no_improvement_signal(self):
        result = calculate_analysis_reward('an-1', 'aeo', 55)
        assert result.previous_score is None
        assert result.improvement == 0.0
        assert result.reward == pytest.approx(0.05)
        assert result.reward_score == 53

    def test_custom_benchmark(self):
        result = calculate_analysis_reward('an-1', 'seo', 70, benchmark=80)
        assert result.benchmark_comparison == pytest.approx(-12.5)
        assert result.reward == pytest.approx(0.05)

    @pytest.mark.parametrize('kwargs', [
        dict(score=120),
        dict(score='high'),
        dict(score=70, previous_score=-1),
        dict(score=70, benchmark=float('nan')),
    ])
    def test_invalid_scores_rejected(self, kwargs):
        with pytest.raises(ValidationError):
            calculate_analysis_reward('an-1', 'seo', **kwargs)

    def test_to_reward(self):
        reward = calculate_analysis_reward('an-1', 'seo', 85, previous_score=70).to_reward()
        assert reward.agent_type == 'seo'
        assert reward.score == 100
        assert (reward.relevance, reward.accuracy, reward.usefulness) == (85, 100, 100)
        assert reward.feedback.startswith('excellent 85/100')

    def test_to_reward_without_improvement(self):
        reward = calculate_analysis_reward('an-1', 'geo', 45).to_reward()
        assert (reward.accuracy, reward.usefulness) == (50, 50)


class TestAnalysisRewardCalculator:

    def test_one_reward_per_score(self, calculator):
        results = calculator.calculate('an-1', {'aeo': 62, 'geo': 55, 'seo': 85})
        assert sorted(results) == ['aeo', 'geo', 'seo']
        assert all(r.analysis_id == 'an-1' for r in results.values())

    def test_aio_score_is_citation_mean(self, calculator):
        results = calculator.calculate(
            'an-1', {'seo': 70},
            aio_scores={'chatgpt': 60, 'perplexity': 70, 'gemini': 80, 'claude': 90},
        )
        assert results['aio'].score == pytest.approx(75.0)
        assert results['aio'].previous_score is None

    def test_previous_and_benchmarks_per_agent(self, calculator):
        results = calculator.calculate('an-2', {'seo': 70, 'geo': 70},
                                       previous={'seo': 60}, benchmarks={'geo': 80})
        assert results['seo'].previous_score == 60
        assert results['seo'].benchmark == 50.0
        assert results['geo'].improvement == 0.0
        assert results['geo'].benchmark == 80.0

    def test_configured_benchmark(self, rewards, learning_config):
        learning_config['rewards']['analysis_benchmark'] = 70
        calculator = AnalysisRewardCalculator(rewards, config=learning_config)
        assert calculator.calculate('an-1', {'seo': 70})['seo'].benchmark_comparison == 0.0

    @pytest.mark.parametrize('analysis_id, scores, aio', [
        ('', {'seo': 70}, None),
        ('an-1', {}, None),
        ('an-1', {'overall': 70}, None),
        ('an-1', [70], None),
        ('an-1', {'seo': 70}, [60, 70]),
        ('an-1', {'seo': 70}, {'chatgpt': 'n/a'}),
    ])
    def test_invalid_input_rejected(self, calculator, analysis_id, scores, aio):
        with pytest.raises(ValidationError):
            calculator.calculate(analysis_id, scores, aio_scores=aio)

    def test_record_stores_one_scored_span_per_agent(self, calculator, rewards, store):
        calculator.record('an-1', {'seo': 85, 'geo': 55}, previous={'seo': 70})

        rows = {row.agent_type: row for row in _spans(store, conversation_id='an-1')}
        assert sorted(rows) == ['geo', 'seo']
        seo = rows['seo']
        assert seo.span_type == 'response'
        assert seo.score == 100
        assert seo.relevance == 85
        assert seo.payload['metadata']['score_level'] == 'excellent'
        assert seo.payload['metadata']['reward'] == 1.0
        assert seo.payload['feedback'].startswith('excellent')
        assert rows['geo'].score == 53

        [bucket] = rewards.get_learning_metrics('seo')
        assert bucket.total_spans == 1
        assert bucket.avg_reward == pytest.approx(100)

    def test_emit_goes_through_channel(self, calculator, channel, store):
        assert calculator.emit('an-1', {'aeo': 62}) is True
        assert channel.drain()
        [row] = _spans(store, conversation_id='an-1')
        assert row.agent_type == 'aeo'
        assert row.score is not None

    def test_emit_invalid_input_returns_false(self, calculator, channel, store):
        assert calculator.emit('an-1', {'overall': 62}) is False
        assert channel.drain()
        assert _spans(store) == []
