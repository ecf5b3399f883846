"""Concurrent writers against one file-backed store — promotion, research apply, rewards."""
import threading
import time

import pytest

from gaeo_learning.models.agent_reward import AgentReward
from gaeo_learning.models.algorithm_version import AlgorithmVersion
from gaeo_learning.services.evaluator import Reward
from gaeo_learning.services.rewards import SpanEvent


def _run_together(*calls):
    """Start every call on its own thread at the same moment; re-raise the first failure."""
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)
    errors = []

    def worker(index, fn):
        barrier.wait()
        try:
            results[index] = fn()
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(i, fn)) for i, fn in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    if errors:
        raise errors[0]
    return results


def _active_ids(store, algorithm_type):
    with store.session() as session:
        return [row.id for row in session.query(AlgorithmVersion).filter(
            AlgorithmVersion.algorithm_type == algorithm_type,
            AlgorithmVersion.is_active.is_(True),
        )]


class TestConcurrentPromote:

    def test_single_active_version_survives(self, versions, store, make_version):
        v1 = make_version('geo', {'f': 1.0}, activate=False)
        v2 = make_version('geo', {'f': 2.0}, activate=False)

        _run_together(lambda: versions.promote(v1.id), lambda: versions.promote(v2.id))

        active = _active_ids(store, 'geo')
        assert len(active) == 1
        assert active[0] in (v1.id, v2.id)
        assert versions.get_active('geo').id == active[0]


class TestConcurrentApplyFinding:

    def test_one_version_per_finding(self, research, versions, store, make_version, monkeypatch):
        make_version('geo', {'f': 10.0})
        finding = research.save_finding('title', 'src', 'geo', {'f': 1.0})

        # Hold the winner inside its transaction long enough for the other caller to arrive.
        original = versions.active_in_session

        def slow_active(session, algorithm_type, lock=False):
            time.sleep(0.2)
            return original(session, algorithm_type, lock=lock)

        monkeypatch.setattr(versions, 'active_in_session', slow_active)

        first, second = _run_together(
            lambda: research.apply_finding(finding.id),
            lambda: research.apply_finding(finding.id),
        )

        assert first.id == second.id
        with store.session() as session:
            research_versions = session.query(AlgorithmVersion).filter(
                AlgorithmVersion.algorithm_type == 'geo',
                AlgorithmVersion.research_based.is_(True),
            ).count()
        assert research_versions == 1
        assert research.get_finding(finding.id).applied_version_id == first.id
        assert _active_ids(store, 'geo') == [first.id]


class TestConcurrentRewards:

    WRITERS = 8

    def test_running_mean_counts_every_writer(self, rewards, store):
        template = rewards.create_template('chat', 'Q: {user_message}')
        scores = [40 + 5 * i for i in range(self.WRITERS)]

        def record(score):
            reward = Reward('chat', score=score, relevance=score, accuracy=score, usefulness=score)
            return lambda: rewards.record_reward(reward, prompt_template_id=template.id)

        results = _run_together(*[record(score) for score in scores])

        assert all(row is not None for row in results)
        updated = rewards.get_template(template.id)
        assert updated.total_uses == self.WRITERS
        assert updated.avg_score == pytest.approx(sum(scores) / self.WRITERS)
        [bucket] = rewards.get_learning_metrics('chat')
        assert bucket.total_spans == self.WRITERS
        assert bucket.avg_reward == pytest.approx(sum(scores) / self.WRITERS)
        with store.session() as session:
            assert session.query(AgentReward).filter(AgentReward.span_type == 'response').count() \
                == self.WRITERS

    def test_racing_rewards_do_not_share_a_span(self, rewards, store):
        rewards.record_span(SpanEvent('response', 'chat', 'answer', conversation_id='c1'))

        def record(score):
            reward = Reward('chat', score=score, relevance=score, accuracy=score, usefulness=score)
            return lambda: rewards.record_reward(reward, conversation_id='c1')

        _run_together(record(60), record(90))

        with store.session() as session:
            scores = sorted(row.score for row in session.query(AgentReward).filter(
                AgentReward.conversation_id == 'c1'))
        assert scores == [60, 90]
