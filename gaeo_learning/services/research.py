"""
Research ingestor — findings from external research turned into versions.

apply_finding is the only path that creates research_based versions. It runs
as one transaction: claim the finding (applied false -> true), read the active
weights, apply the bounded delta, insert + promote the new version, link it to
the finding. A caller that loses the claim returns the winner's version.
"""
import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from gaeo_learning.config import default_weights
from gaeo_learning.database import utcnow
from gaeo_learning.errors import (
    LearningEngineError, NotFound, PersistenceError, ValidationError,
)
from gaeo_learning.models.algorithm_version import AlgorithmVersion
from gaeo_learning.models.research_finding import ResearchFinding
from gaeo_learning.services.version_store import validate_algorithm_type
from gaeo_learning.services.weight_learner import validate_delta

logger = logging.getLogger('services.research')

_APPLY_ATTEMPTS = 3


def _require_text(value, name):
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    return value.strip()


class ResearchIngestor:

    def __init__(self, store, versions, learner):
        self.store = store
        self.versions = versions
        self.learner = learner

    def save_finding(self, title, source, algorithm_type, suggested_weight_delta=None,
                     url=None, published_date=None, impacts=None):
        """Store a finding, unapplied."""
        title = _require_text(title, 'title')
        source = _require_text(source, 'source')
        validate_algorithm_type(algorithm_type)
        if suggested_weight_delta is not None:
            validate_delta(suggested_weight_delta)
        if impacts is not None:
            if not isinstance(impacts, list):
                raise ValidationError("impacts must be a list of {factor, impact, confidence}")
            # Dry run against an empty vector validates every item.
            self.learner.delta_from_impacts({}, impacts)

        with self.store.session() as session:
            finding = ResearchFinding(
                title=title,
                source=source,
                url=url,
                published_date=published_date,
                algorithm_type=algorithm_type,
                suggested_weight_delta=dict(suggested_weight_delta) if suggested_weight_delta else None,
                impacts=[dict(i) for i in impacts] if impacts else None,
                applied=False,
            )
            session.add(finding)

        logger.info("Saved %s finding '%s' (%s)", algorithm_type, title[:60], finding.id)
        return finding

    def get_finding(self, finding_id):
        with self.store.session() as session:
            finding = session.get(ResearchFinding, finding_id)
        if finding is None:
            raise NotFound('finding', finding_id)
        return finding

    def get_unapplied(self, algorithm_type=None):
        """Unapplied findings, newest first. Empty list if the store is unavailable."""
        if algorithm_type is not None:
            validate_algorithm_type(algorithm_type)
        try:
            with self.store.session() as session:
                query = session.query(ResearchFinding).filter(ResearchFinding.applied.is_(False))
                if algorithm_type is not None:
                    query = query.filter(ResearchFinding.algorithm_type == algorithm_type)
                return query.order_by(ResearchFinding.created_at.desc()).all()
        except PersistenceError:
            logger.error("Failed to list unapplied findings", exc_info=True)
            return []

    def apply_finding(self, finding_id):
        """Apply a finding as a new promoted research_based version. Idempotent."""
        for attempt in range(1, _APPLY_ATTEMPTS + 1):
            try:
                return self._apply_once(finding_id)
            except PersistenceError as e:
                if not isinstance(e.__cause__, IntegrityError) or attempt == _APPLY_ATTEMPTS:
                    raise
                logger.warning("Version collision applying finding %s (attempt %d), retrying",
                               finding_id, attempt)

    def _apply_once(self, finding_id):
        with self.store.session() as session:
            # Claim first: the conditional UPDATE is the transaction's first
            # write, so concurrent callers serialize on it and only one wins.
            claimed = session.execute(
                update(ResearchFinding)
                .where(ResearchFinding.id == finding_id, ResearchFinding.applied.is_(False))
                .values(applied=True, applied_at=utcnow())
                .execution_options(synchronize_session=False)
            ).rowcount
            finding = session.get(ResearchFinding, finding_id)
            if finding is None:
                raise NotFound('finding', finding_id)

            if not claimed:
                version = session.get(AlgorithmVersion, finding.applied_version_id) \
                    if finding.applied_version_id else None
                if version is None:
                    raise NotFound('version', finding.applied_version_id)
                logger.info("Finding %s already applied as %s v%d",
                            finding_id, version.algorithm_type, version.version)
                return version

            algorithm_type = finding.algorithm_type
            active = self.versions.active_in_session(session, algorithm_type, lock=True)
            current = dict(active.weights) if active is not None else default_weights(algorithm_type)

            delta = finding.suggested_weight_delta
            if not delta:
                delta = self.learner.delta_from_impacts(current, finding.impacts)
            if not delta:
                raise ValidationError(f"Finding '{finding_id}' carries no weight delta or impacts")

            weights = self.learner.adjust_weights_from_research(current, delta)
            version = self.versions.add_version(
                session, algorithm_type, weights,
                research_based=True,
                config={
                    'source': 'research',
                    'description': finding.title,
                    'based_on_version': active.version if active is not None else 0,
                },
                research_findings=[finding.id],
            )
            self.versions.activate(session, version)
            finding.applied_version_id = version.id

        logger.info("Applied finding %s -> %s v%d", finding_id, algorithm_type, version.version,
                    extra={'algorithm_type': algorithm_type, 'version': version.version,
                           'finding_id': finding_id})
        return version

    def apply_all(self, algorithm_type=None):
        """Apply every unapplied finding, oldest first. Failures are logged and skipped."""
        applied = []
        for finding in reversed(self.get_unapplied(algorithm_type)):
            try:
                applied.append(self.apply_finding(finding.id))
            except LearningEngineError:
                logger.error("Failed to apply finding %s", finding.id, exc_info=True,
                             extra={'finding_id': finding.id})
        return applied

    def research_improvements(self, algorithm_type=None, limit=10):
        """Applied findings with the version each produced, most recent first."""
        if algorithm_type is not None:
            validate_algorithm_type(algorithm_type)
        try:
            with self.store.session() as session:
                query = session.query(ResearchFinding, AlgorithmVersion).outerjoin(
                    AlgorithmVersion,
                    AlgorithmVersion.id == ResearchFinding.applied_version_id,
                ).filter(ResearchFinding.applied.is_(True))
                if algorithm_type is not None:
                    query = query.filter(ResearchFinding.algorithm_type == algorithm_type)
                rows = query.order_by(ResearchFinding.applied_at.desc()).limit(limit).all()
        except PersistenceError:
            logger.error("Failed to load research improvements", exc_info=True)
            return []

        return [
            {
                'finding': finding.to_dict(),
                'version': version.to_dict() if version is not None else None,
            }
            for finding, version in rows
        ]
