"""
Learning engine factory.

Opens the Store and wires every component to it. The surrounding product
creates one engine at process start and closes it at shutdown:

    engine = create_learning_engine(scorer=score_content)
    active = engine.versions.get_active('geo')
    ...
    engine.close()
"""
import logging


class LearningEngine:
    """Holds the opened Store and the components built on it."""

    def __init__(self, store, versions, learner, ab_tests, research, rewards, cycle,
                 analysis_rewards=None):
        self.store = store
        self.versions = versions
        self.learner = learner
        self.ab_tests = ab_tests
        self.research = research
        self.rewards = rewards
        self.cycle = cycle
        self.analysis_rewards = analysis_rewards

    def close(self):
        """Flush pending rewards, then release the store."""
        self.rewards.close()
        self.store.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


def create_learning_engine(database_url=None, scorer=None, evaluator=None, lock_client=None,
                           create_schema=False, config=None):
    """Create and wire the learning engine."""
    from gaeo_learning.config import load_learning_config
    from gaeo_learning.database import Store
    from gaeo_learning.logging_config import configure_logging
    from gaeo_learning.pipeline.learning_cycle import LearningCycle
    from gaeo_learning.services.ab_testing import ABTestRunner
    from gaeo_learning.services.analysis_rewards import AnalysisRewardCalculator
    from gaeo_learning.services.research import ResearchIngestor
    from gaeo_learning.services.rewards import RewardPipeline
    from gaeo_learning.services.version_store import VersionStore
    from gaeo_learning.services.weight_learner import WeightLearner

    configure_logging()
    config = config or load_learning_config()

    store = Store(database_url).open()
    if create_schema:
        store.create_all()

    versions = VersionStore(store)
    learner = WeightLearner(config)
    ab_tests = ABTestRunner(
        store, versions, scorer=scorer,
        recent_limit=int(config.get('promotion', {}).get('batch_size', 200)),
    )
    research = ResearchIngestor(store, versions, learner)
    rewards = RewardPipeline(store, evaluator=evaluator, config=config)
    analysis_rewards = AnalysisRewardCalculator(rewards, config=config)
    cycle = LearningCycle(store, versions, ab_tests, learner, lock_client=lock_client, config=config)

    logging.getLogger('gaeo_learning').info("Learning engine ready (%s)", store.dialect)
    return LearningEngine(store, versions, learner, ab_tests, research, rewards, cycle,
                          analysis_rewards=analysis_rewards)
