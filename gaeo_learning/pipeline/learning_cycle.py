"""
Learning cycle — turns recent A/B evidence into a promoted version.

Externally scheduled (cron / RQ), never self-scheduling. One run per type:
  1. take the Redis lock learning:<type> (skip if another run holds it)
  2. read the active version
  3. pull tests whose outcome was confirmed since that version was promoted
  4. learn new weights on the batch
  5. promote a new version only if the measured improvement clears the threshold

Re-running after a failure reads "tests since last promotion" again, so no
external cursor is needed and a finished run is a no-op until new tests arrive.
"""
import logging
from dataclasses import asdict, dataclass
from typing import Optional

from redis.exceptions import LockError

from gaeo_learning.config import (
    ALGORITHM_TYPES, LEARNING_JOB_TIMEOUT, LEARNING_LOCK_TIMEOUT,
    LEARNING_QUEUE_NAME, load_learning_config,
)
from gaeo_learning.errors import NotInitialized
from gaeo_learning.services.version_store import validate_algorithm_type

logger = logging.getLogger('pipeline.learning_cycle')


@dataclass
class CycleOutcome:
    algorithm_type: str
    promoted: bool = False
    version_id: Optional[str] = None
    improvement_rate: float = 0.0
    sample_size: int = 0
    reason: str = ''


# ── Lazy RQ queue (no Redis connection at import time) ───────────────────────

_queue = None

def _get_queue():
    global _queue
    if _queue is None:
        from gaeo_learning.extensions import redis_client
        from rq import Queue
        _queue = Queue(LEARNING_QUEUE_NAME, connection=redis_client)
    return _queue


class LearningCycle:

    def __init__(self, store, versions, ab_tests, learner, lock_client=None, config=None):
        self.store = store
        self.versions = versions
        self.ab_tests = ab_tests
        self.learner = learner
        self.lock_client = lock_client
        promotion = (config or load_learning_config()).get('promotion', {})
        self.min_improvement_rate = max(0.0, float(promotion.get('min_improvement_rate', 0.01)))
        self.batch_size = int(promotion.get('batch_size', 200))

    def run(self, algorithm_type) -> CycleOutcome:
        validate_algorithm_type(algorithm_type)
        lock = None
        if self.lock_client is not None:
            lock = self.lock_client.lock(f'learning:{algorithm_type}', timeout=LEARNING_LOCK_TIMEOUT)
            if not lock.acquire(blocking=False):
                logger.info("Learning for %s already running, skipping", algorithm_type,
                            extra={'algorithm_type': algorithm_type})
                return CycleOutcome(algorithm_type, reason='locked')
        try:
            return self._run_unlocked(algorithm_type)
        finally:
            if lock is not None:
                try:
                    lock.release()
                except LockError:
                    logger.warning("Learning lock for %s expired before release", algorithm_type)

    def _run_unlocked(self, algorithm_type):
        try:
            active = self.versions.get_active(algorithm_type, strict=True)
        except NotInitialized:
            logger.info("No active %s version, nothing to learn from", algorithm_type)
            return CycleOutcome(algorithm_type, reason='not_initialized')

        tests = self.ab_tests.recent_tests(
            algorithm_type, since=active.promoted_at, limit=self.batch_size,
        )
        if not tests:
            logger.info("No new %s tests since v%d", algorithm_type, active.version,
                        extra={'algorithm_type': algorithm_type, 'version': active.version})
            return CycleOutcome(algorithm_type, reason='no_new_tests')

        result = self.learner.learn_weights(algorithm_type, tests, active.weights)
        if result.improvement_rate <= self.min_improvement_rate:
            logger.info("%s improvement %.4f below threshold %.4f, keeping v%d",
                        algorithm_type, result.improvement_rate,
                        self.min_improvement_rate, active.version,
                        extra={'algorithm_type': algorithm_type, 'version': active.version})
            return CycleOutcome(
                algorithm_type,
                improvement_rate=result.improvement_rate,
                sample_size=result.sample_size,
                reason='below_threshold',
            )

        version = self.versions.create_version(
            algorithm_type,
            result.weights,
            research_based=False,
            performance_seed={
                'avg_error': round(result.new_error, 4),
                'avg_accuracy': round(max(0.0, 100.0 - result.new_error), 4),
                'total_tests': result.sample_size,
                'improvement_rate': round(result.improvement_rate, 4),
            },
            config={
                'source': 'learning',
                'based_on_version': active.version,
                'changed_factors': result.changed_factors,
            },
            activate=True,
        )
        logger.info("Promoted learned %s v%d (improvement %.2f%%, n=%d)",
                    algorithm_type, version.version, result.improvement_rate * 100,
                    result.sample_size,
                    extra={'algorithm_type': algorithm_type, 'version': version.version})
        return CycleOutcome(
            algorithm_type,
            promoted=True,
            version_id=version.id,
            improvement_rate=result.improvement_rate,
            sample_size=result.sample_size,
            reason='promoted',
        )

    def run_all(self):
        """Run every type in turn. One type failing does not stop the rest."""
        outcomes = []
        for algorithm_type in ALGORITHM_TYPES:
            try:
                outcomes.append(self.run(algorithm_type))
            except Exception as e:
                logger.error("Learning cycle failed for %s", algorithm_type, exc_info=True,
                             extra={'algorithm_type': algorithm_type})
                outcomes.append(CycleOutcome(algorithm_type, reason=f'error: {str(e)[:200]}'))
        return outcomes


# ── RQ entry points ──────────────────────────────────────────────────────────

def enqueue_learning_cycle(algorithm_type=None):
    """Queue a learning run (one type, or all when None)."""
    if algorithm_type is not None:
        validate_algorithm_type(algorithm_type)
    job = _get_queue().enqueue(
        run_scheduled_learning, algorithm_type, job_timeout=LEARNING_JOB_TIMEOUT,
    )
    logger.info("Enqueued learning cycle for %s (job %s)", algorithm_type or 'all types', job.id,
                extra={'algorithm_type': algorithm_type, 'job_id': job.id})
    return job


def run_scheduled_learning(algorithm_type=None):
    """Job body: build an engine from DATABASE_URL, run, close."""
    from gaeo_learning import create_learning_engine
    from gaeo_learning.extensions import redis_client
    from rq import get_current_job

    engine = create_learning_engine(lock_client=redis_client)
    try:
        if algorithm_type is not None:
            outcomes = [engine.cycle.run(algorithm_type)]
        else:
            outcomes = engine.cycle.run_all()
        job = get_current_job()
        logger.info("Learning job finished: %s",
                    ', '.join(f'{o.algorithm_type}={o.reason}' for o in outcomes),
                    extra={'algorithm_type': algorithm_type, 'job_id': job.id if job else None})
        return [asdict(o) for o in outcomes]
    finally:
        engine.close()
