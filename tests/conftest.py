"""Shared test fixtures."""
import pytest
from unittest.mock import patch, MagicMock

from gaeo_learning.config import _default_config
from gaeo_learning.database import Store
from gaeo_learning.services.ab_testing import ABTestRunner
from gaeo_learning.services.channel import BestEffortChannel
from gaeo_learning.services.research import ResearchIngestor
from gaeo_learning.services.rewards import RewardPipeline
from gaeo_learning.services.version_store import VersionStore
from gaeo_learning.services.weight_learner import WeightLearner, predict


@pytest.fixture
def store(tmp_path):
    """File-backed SQLite Store with schema created.

    A file (not :memory:) so the reward channel's worker thread sees the same
    database through its own connection.
    """
    s = Store(f"sqlite:///{tmp_path / 'learning.db'}").open()
    s.create_all()
    yield s
    s.close()


@pytest.fixture
def learning_config():
    """The built-in tunables, independent of any YAML on disk."""
    return _default_config()


@pytest.fixture
def versions(store):
    return VersionStore(store)


@pytest.fixture
def learner(learning_config):
    return WeightLearner(learning_config)


@pytest.fixture
def scorer():
    """Deterministic scorer: the linear weighted feature sum."""
    return MagicMock(side_effect=lambda algorithm_type, scoring_input, weights:
                     predict(weights, scoring_input.features))


@pytest.fixture
def ab_tests(store, versions, scorer):
    return ABTestRunner(store, versions, scorer=scorer)


@pytest.fixture
def research(store, versions, learner):
    return ResearchIngestor(store, versions, learner)


@pytest.fixture
def channel():
    ch = BestEffortChannel('test', maxsize=100).start()
    yield ch
    ch.close()


@pytest.fixture
def rewards(store, channel, learning_config):
    pipeline = RewardPipeline(store, channel=channel, config=learning_config)
    yield pipeline
    pipeline.close()


@pytest.fixture
def make_version(versions):
    """Factory fixture — creates (and by default promotes) a version."""
    def _make(algorithm_type='geo', weights=None, activate=True, **kwargs):
        return versions.create_version(
            algorithm_type,
            weights or {'factor_x': 1.0, 'factor_y': 2.0},
            activate=activate,
            **kwargs,
        )
    return _make


@pytest.fixture
def mock_redis():
    """Mock Redis client whose locks are always free."""
    mock = MagicMock()
    mock.get.return_value = None
    mock.lock.return_value.acquire.return_value = True
    with patch('gaeo_learning.extensions.redis_client', mock):
        yield mock
