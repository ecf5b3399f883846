"""
A/B test runner — paired comparisons of two algorithm versions.

Both versions score the same input through the injected scorer
(scorer(algorithm_type, scoring_input, weights) -> float). When the actual
outcome is known the version with the smaller absolute error wins; ties and
unconfirmed tests have no winner.
"""
import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Dict, Optional

from sqlalchemy import func

from gaeo_learning.database import utcnow
from gaeo_learning.errors import NotFound, PersistenceError, ValidationError
from gaeo_learning.models.algorithm_test import AlgorithmTest
from gaeo_learning.models.algorithm_version import AlgorithmVersion
from gaeo_learning.services.version_store import validate_algorithm_type

logger = logging.getLogger('services.ab_testing')


def _finite(value, name):
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(f"{name} must be a finite number, got {value!r}")
    return float(value)


@dataclass
class ScoringInput:
    """What both versions are scored against."""
    features: Dict[str, float] = field(default_factory=dict)
    analysis_id: Optional[str] = None
    content: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.features, dict):
            raise ValidationError("features must be a mapping of factor -> value")
        self.features = {str(k): _finite(v, f"feature '{k}'") for k, v in self.features.items()}


@dataclass
class ABTestSummary:
    total_tests: int = 0
    wins_a: int = 0
    wins_b: int = 0
    avg_error_a: float = 0.0
    avg_error_b: float = 0.0

    def to_dict(self):
        return asdict(self)


def determine_winner(score_a, score_b, actual_score):
    """'A' or 'B' for the strictly smaller |score - actual|; None on a tie or no actual."""
    if actual_score is None:
        return None
    error_a = abs(score_a - actual_score)
    error_b = abs(score_b - actual_score)
    if error_a < error_b:
        return 'A'
    if error_b < error_a:
        return 'B'
    return None


class ABTestRunner:

    def __init__(self, store, versions, scorer=None, recent_limit=200):
        self.store = store
        self.versions = versions
        self.scorer = scorer
        self.recent_limit = recent_limit

    def _resolve(self, algorithm_type, version_id):
        if version_id is None:
            return self.versions.get_active(algorithm_type, strict=True)
        version = self.versions.get_version(version_id)
        if version.algorithm_type != algorithm_type:
            raise ValidationError(
                f"Version '{version_id}' is {version.algorithm_type}, not {algorithm_type}"
            )
        return version

    def _score(self, algorithm_type, scoring_input, version):
        if self.scorer is None:
            raise ValidationError("No scorer configured for A/B tests")
        score = self.scorer(algorithm_type, scoring_input, dict(version.weights or {}))
        return _finite(score, f"score from version {version.version}")

    def create_ab_test(self, algorithm_type, version_a_id, version_b_id, scoring_input,
                       actual_score=None, analysis_id=None):
        """
        Score one input with two versions and store the comparison.

        version_a_id=None means the active version of the type.
        """
        validate_algorithm_type(algorithm_type)
        if isinstance(scoring_input, dict):
            try:
                scoring_input = ScoringInput(**scoring_input)
            except TypeError as e:
                raise ValidationError(f"Invalid scoring input: {e}") from e
        elif not isinstance(scoring_input, ScoringInput):
            raise ValidationError(f"Expected ScoringInput, got {type(scoring_input).__name__}")
        if actual_score is not None:
            actual_score = _finite(actual_score, 'actual_score')

        version_a = self._resolve(algorithm_type, version_a_id)
        version_b = self._resolve(algorithm_type, version_b_id)

        score_a = self._score(algorithm_type, scoring_input, version_a)
        score_b = self._score(algorithm_type, scoring_input, version_b)
        winner = determine_winner(score_a, score_b, actual_score)

        with self.store.session() as session:
            test = AlgorithmTest(
                algorithm_type=algorithm_type,
                analysis_id=analysis_id or scoring_input.analysis_id,
                version_a_id=version_a.id,
                version_b_id=version_b.id,
                score_a=score_a,
                score_b=score_b,
                actual_score=actual_score,
                features=dict(scoring_input.features),
                winner=winner,
                confirmed_at=utcnow() if actual_score is not None else None,
            )
            session.add(test)

        logger.info("A/B %s: v%d=%.2f v%d=%.2f actual=%s winner=%s",
                    algorithm_type, version_a.version, score_a, version_b.version,
                    score_b, actual_score, winner)

        if actual_score is not None:
            self._refresh_quietly(version_a.id, version_b.id)
        return test

    def confirm_outcome(self, test_id, actual_score):
        """Record the ground truth for a stored test and settle its winner."""
        actual_score = _finite(actual_score, 'actual_score')
        with self.store.session() as session:
            test = session.get(AlgorithmTest, test_id)
            if test is None:
                raise NotFound('test', test_id)
            test.actual_score = actual_score
            test.winner = determine_winner(test.score_a, test.score_b, actual_score)
            test.confirmed_at = utcnow()

        self._refresh_quietly(test.version_a_id, test.version_b_id)
        return test

    def _refresh_quietly(self, *version_ids):
        for version_id in dict.fromkeys(version_ids):
            try:
                self.refresh_version_performance(version_id)
            except Exception:
                logger.error("Failed to refresh performance for %s", version_id, exc_info=True)

    # ── Aggregates ───────────────────────────────────────────────────────────

    def get_ab_test_results(self, algorithm_type, since=None, version_a_id=None,
                            version_b_id=None) -> ABTestSummary:
        """
        Win counts and mean absolute errors over stored tests.

        The error reference is the actual score, or the midpoint of both scores
        while the outcome is unknown. Tests without a winner count toward the
        total and the averages only.
        """
        validate_algorithm_type(algorithm_type)
        try:
            with self.store.session() as session:
                query = session.query(AlgorithmTest).filter(
                    AlgorithmTest.algorithm_type == algorithm_type,
                )
                if since is not None:
                    query = query.filter(AlgorithmTest.created_at >= since)
                if version_a_id is not None:
                    query = query.filter(AlgorithmTest.version_a_id == version_a_id)
                if version_b_id is not None:
                    query = query.filter(AlgorithmTest.version_b_id == version_b_id)
                tests = query.all()
        except PersistenceError:
            logger.error("Failed to load A/B results for %s", algorithm_type, exc_info=True)
            return ABTestSummary()

        if not tests:
            return ABTestSummary()

        error_a = error_b = 0.0
        for test in tests:
            reference = test.actual_score
            if reference is None:
                reference = (test.score_a + test.score_b) / 2
            error_a += abs(test.score_a - reference)
            error_b += abs(test.score_b - reference)

        return ABTestSummary(
            total_tests=len(tests),
            wins_a=sum(1 for t in tests if t.winner == 'A'),
            wins_b=sum(1 for t in tests if t.winner == 'B'),
            avg_error_a=round(error_a / len(tests), 4),
            avg_error_b=round(error_b / len(tests), 4),
        )

    def get_daily_performance(self, algorithm_type, days=30):
        """Per-day test count and mean error of version A, oldest day first."""
        validate_algorithm_type(algorithm_type)
        cutoff = utcnow() - timedelta(days=days)
        day = func.date(AlgorithmTest.created_at)
        try:
            with self.store.session() as session:
                rows = session.query(
                    day.label('day'),
                    func.count(AlgorithmTest.id).label('tests'),
                    func.avg(func.abs(AlgorithmTest.score_a - AlgorithmTest.actual_score)).label('avg_error'),
                ).filter(
                    AlgorithmTest.algorithm_type == algorithm_type,
                    AlgorithmTest.created_at >= cutoff,
                ).group_by(day).order_by(day).all()
        except PersistenceError:
            logger.error("Failed to load daily performance for %s", algorithm_type, exc_info=True)
            return []

        return [
            {
                'date': str(r.day)[:10],
                'total_tests': r.tests,
                'avg_error': round(float(r.avg_error), 2) if r.avg_error is not None else None,
            }
            for r in rows
        ]

    def recent_tests(self, algorithm_type, since=None, limit=None):
        """
        Tests with ground truth, most recently confirmed first.

        since filters on when the outcome arrived, so a test created before a
        promotion but confirmed after it still counts as new evidence.
        """
        validate_algorithm_type(algorithm_type)
        confirmed = func.coalesce(AlgorithmTest.confirmed_at, AlgorithmTest.created_at)
        with self.store.session() as session:
            query = session.query(AlgorithmTest).filter(
                AlgorithmTest.algorithm_type == algorithm_type,
                AlgorithmTest.actual_score.isnot(None),
            )
            if since is not None:
                query = query.filter(confirmed > since)
            return (
                query.order_by(confirmed.desc())
                .limit(limit or self.recent_limit)
                .all()
            )

    def refresh_version_performance(self, version_id):
        """
        Recompute a version's stats from its ground-truth tests.

        avg_accuracy = 100 - avg_error; improvement_rate is the relative error
        reduction against the previous version of the same type.
        """
        with self.store.session() as session:
            version = session.get(AlgorithmVersion, version_id)
            if version is None:
                raise NotFound('version', version_id)
            count, total_error = self._error_totals(session, version_id)
            previous = session.query(AlgorithmVersion).filter(
                AlgorithmVersion.algorithm_type == version.algorithm_type,
                AlgorithmVersion.version < version.version,
            ).order_by(AlgorithmVersion.version.desc()).first()

        if count == 0:
            return version

        avg_error = total_error / count
        improvement = 0.0
        if previous is not None and previous.total_tests and previous.avg_error:
            improvement = max(-1.0, min(1.0, (previous.avg_error - avg_error) / previous.avg_error))

        return self.versions.update_performance(
            version_id,
            avg_error=round(avg_error, 4),
            avg_accuracy=round(max(0.0, 100.0 - avg_error), 4),
            total_tests=count,
            improvement_rate=round(improvement, 4),
        )

    @staticmethod
    def _error_totals(session, version_id):
        count = 0
        total = 0.0
        for version_col, score_col in (
            (AlgorithmTest.version_a_id, AlgorithmTest.score_a),
            (AlgorithmTest.version_b_id, AlgorithmTest.score_b),
        ):
            n, err = session.query(
                func.count(AlgorithmTest.id),
                func.sum(func.abs(score_col - AlgorithmTest.actual_score)),
            ).filter(
                version_col == version_id,
                AlgorithmTest.actual_score.isnot(None),
            ).one()
            count += n or 0
            total += float(err or 0.0)
        return count, total
