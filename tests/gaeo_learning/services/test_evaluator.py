"""Tests for gaeo_learning.services.evaluator — heuristic response grading."""
import pytest

from gaeo_learning.errors import ValidationError
from gaeo_learning.services.evaluator import ResponseQualityEvaluator, Reward


@pytest.fixture
def evaluator():
    return ResponseQualityEvaluator({'relevance': 0.4, 'accuracy': 0.3, 'usefulness': 0.3})


RICH_ANSWER = """## How to improve your GEO score

1. Add FAQPage structured data to the page.
2. Update the article at least every 30 days.

For example, see https://schema.org/FAQPage for the schema reference.
"""


class TestRelevance:

    def test_base_score_without_context(self, evaluator):
        assert evaluator.relevance('anything', {}) == pytest.approx(0.5)

    def test_full_keyword_overlap(self, evaluator):
        score = evaluator.relevance('improve your faq schema', {'user_message': 'improve faq schema'})
        assert score == pytest.approx(0.8)

    def test_partial_overlap(self, evaluator):
        score = evaluator.relevance('faq only', {'user_message': 'faq schema'})
        assert score == pytest.approx(0.65)

    def test_short_words_ignored(self, evaluator):
        assert evaluator.relevance('text', {'user_message': 'a an to'}) == pytest.approx(0.5)

    def test_analysis_vocabulary_counts_only_with_analysis(self, evaluator):
        text = 'Your SEO and GEO score can improve'
        assert evaluator.relevance(text, {}) == pytest.approx(0.5)
        assert evaluator.relevance(text, {'analysis': {'seo_score': 60}}) > 0.5

    def test_capped_at_one(self, evaluator):
        text = 'aeo geo seo score improve optimize faq'
        assert evaluator.relevance(text, {'user_message': 'faq', 'analysis': True}) <= 1.0


class TestAccuracy:

    def test_base_score(self, evaluator):
        assert evaluator.accuracy('hello there') == pytest.approx(0.7)

    def test_each_signal_adds_point_one(self, evaluator):
        assert evaluator.accuracy('use structured markup') == pytest.approx(0.8)
        assert evaluator.accuracy('wait 30 days') == pytest.approx(0.8)
        assert evaluator.accuracy('1. do this') == pytest.approx(0.9)  # number + step

    def test_all_signals_cap_at_one(self, evaluator):
        assert evaluator.accuracy(RICH_ANSWER) == pytest.approx(1.0)


class TestUsefulness:

    def test_base_score(self, evaluator):
        assert evaluator.usefulness('hello there') == pytest.approx(0.5)

    def test_actionable(self, evaluator):
        assert evaluator.usefulness('please add a summary') == pytest.approx(0.7)

    def test_all_signals(self, evaluator):
        text = 'Add this. For example `code` see https://x.com'
        assert evaluator.usefulness(text) == pytest.approx(1.0)


class TestEvaluate:

    def test_composite_weights(self, evaluator):
        reward = evaluator.evaluate('chat', 'hello there', {})
        # 0.4*0.5 + 0.3*0.7 + 0.3*0.5 = 0.56
        assert reward.score == 56
        assert reward.relevance == 50.0
        assert reward.accuracy == 70.0
        assert reward.usefulness == 50.0

    def test_rich_answer_scores_higher(self, evaluator):
        poor = evaluator.evaluate('chat', 'ok', {'user_message': 'how to improve geo'})
        rich = evaluator.evaluate('chat', RICH_ANSWER, {'user_message': 'how to improve geo'})
        assert rich.score > poor.score
        assert 0 <= rich.score <= 100

    def test_empty_response(self, evaluator):
        reward = evaluator.evaluate('seo', '', None)
        assert isinstance(reward, Reward)
        assert reward.agent_type == 'seo'

    def test_unknown_agent_type(self, evaluator):
        with pytest.raises(ValidationError):
            evaluator.evaluate('robot', 'text', {})

    def test_deterministic(self, evaluator):
        a = evaluator.evaluate('chat', RICH_ANSWER, {'user_message': 'faq'})
        b = evaluator.evaluate('chat', RICH_ANSWER, {'user_message': 'faq'})
        assert a == b
