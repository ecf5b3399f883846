"""
Version store — AlgorithmVersion lifecycle (create, promote, read, performance).

Exactly one version per algorithm type is active once the type has been
initialized. Promotion is the one write that needs a strict transaction:
the type's rows are locked, every other version is deactivated and the
target is activated in a single commit, so a concurrent promotion is either
fully before or fully after this one.
"""
import logging
import math

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.attributes import set_committed_value

from gaeo_learning.config import ALGORITHM_TYPES, default_weights
from gaeo_learning.database import utcnow
from gaeo_learning.errors import (
    Conflict, NotFound, NotInitialized, PersistenceError, ValidationError,
)
from gaeo_learning.models.algorithm_version import AlgorithmVersion

logger = logging.getLogger('services.version_store')

_CREATE_ATTEMPTS = 3

_PERFORMANCE_FIELDS = ('avg_accuracy', 'avg_error', 'total_tests', 'improvement_rate')


def validate_algorithm_type(algorithm_type):
    if algorithm_type not in ALGORITHM_TYPES:
        raise ValidationError(
            f"Unknown algorithm type '{algorithm_type}' (expected one of {', '.join(ALGORITHM_TYPES)})"
        )
    return algorithm_type


def validate_weights(weights):
    """Return a clean {factor: float} copy, preserving order. Raises ValidationError."""
    if not isinstance(weights, dict) or not weights:
        raise ValidationError("weights must be a non-empty mapping of factor -> number")
    clean = {}
    for factor, value in weights.items():
        if not isinstance(factor, str) or not factor.strip():
            raise ValidationError(f"Invalid factor name: {factor!r}")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"Weight for '{factor}' is not numeric: {value!r}")
        if not math.isfinite(value):
            raise ValidationError(f"Weight for '{factor}' is not finite: {value!r}")
        clean[factor] = float(value)
    return clean


class VersionStore:
    """Reads and writes AlgorithmVersion rows through an injected Store."""

    def __init__(self, store):
        self.store = store

    # ── Reads ────────────────────────────────────────────────────────────────

    def get_active(self, algorithm_type, strict=False):
        """
        The active version for a type.

        With no active row, returns an unsaved bootstrap version (version 0,
        configured default weights) unless strict, in which case NotInitialized
        is raised. Store failures degrade to the bootstrap in non-strict mode.
        """
        validate_algorithm_type(algorithm_type)
        row = None
        try:
            with self.store.session() as session:
                row = self.active_in_session(session, algorithm_type)
        except PersistenceError:
            if strict:
                raise
            logger.error("Failed to read active %s version, serving defaults",
                         algorithm_type, exc_info=True)

        if row is not None:
            return row
        if strict:
            raise NotInitialized(algorithm_type)
        return self.bootstrap_version(algorithm_type)

    def active_in_session(self, session, algorithm_type, lock=False):
        query = session.query(AlgorithmVersion).filter(
            AlgorithmVersion.algorithm_type == algorithm_type,
            AlgorithmVersion.is_active.is_(True),
        )
        if lock:
            query = query.with_for_update()
        return query.first()

    @staticmethod
    def bootstrap_version(algorithm_type):
        return AlgorithmVersion(
            id=None,
            algorithm_type=algorithm_type,
            version=0,
            weights=default_weights(algorithm_type),
            config={'source': 'bootstrap'},
            is_active=False,
            research_based=False,
            research_findings=[],
            avg_accuracy=0.0,
            avg_error=0.0,
            total_tests=0,
            improvement_rate=0.0,
        )

    def get_version(self, version_id):
        with self.store.session() as session:
            row = session.get(AlgorithmVersion, version_id)
        if row is None:
            raise NotFound('version', version_id)
        return row

    def list_versions(self, algorithm_type):
        """Full history for a type, oldest first."""
        validate_algorithm_type(algorithm_type)
        with self.store.session() as session:
            return (
                session.query(AlgorithmVersion)
                .filter(AlgorithmVersion.algorithm_type == algorithm_type)
                .order_by(AlgorithmVersion.version.asc())
                .all()
            )

    # ── Writes ───────────────────────────────────────────────────────────────

    def create_version(self, algorithm_type, weights, research_based=False,
                       performance_seed=None, config=None, research_findings=None,
                       activate=False):
        """
        Insert the next version (max + 1, starting at 1) for a type.

        The number is allocated in the same transaction as the insert; a
        unique-constraint collision with a concurrent writer is retried.
        activate=True promotes the new row before the commit.
        """
        validate_algorithm_type(algorithm_type)
        weights = validate_weights(weights)

        for attempt in range(1, _CREATE_ATTEMPTS + 1):
            try:
                with self.store.session() as session:
                    row = self.add_version(
                        session, algorithm_type, weights,
                        research_based=research_based,
                        performance_seed=performance_seed,
                        config=config,
                        research_findings=research_findings,
                    )
                    if activate:
                        self.activate(session, row)
                break
            except PersistenceError as e:
                if not isinstance(e.__cause__, IntegrityError) or attempt == _CREATE_ATTEMPTS:
                    raise
                logger.warning("Version number collision for %s (attempt %d), retrying",
                               algorithm_type, attempt)

        logger.info("Created %s v%d (research_based=%s, active=%s)",
                    algorithm_type, row.version, research_based, bool(row.is_active),
                    extra={'algorithm_type': algorithm_type, 'version': row.version})
        return row

    def add_version(self, session, algorithm_type, weights, research_based=False,
                    performance_seed=None, config=None, research_findings=None):
        """Allocate a version number and insert a row inside the caller's transaction."""
        current_max = session.query(func.max(AlgorithmVersion.version)).filter(
            AlgorithmVersion.algorithm_type == algorithm_type,
        ).scalar()

        seed = performance_seed or {}
        row = AlgorithmVersion(
            algorithm_type=algorithm_type,
            version=(current_max or 0) + 1,
            weights=dict(weights),
            config=dict(config or {}),
            is_active=False,
            research_based=bool(research_based),
            research_findings=list(research_findings or []),
            avg_accuracy=float(seed.get('avg_accuracy', 0.0)),
            avg_error=float(seed.get('avg_error', 0.0)),
            total_tests=int(seed.get('total_tests', 0)),
            improvement_rate=float(seed.get('improvement_rate', 0.0)),
        )
        session.add(row)
        session.flush()
        return row

    def promote(self, version_id, algorithm_type=None):
        """
        Make version_id the single active version of its type.

        Raises Conflict if the id does not exist, or does not belong to
        algorithm_type when one is given.
        """
        if algorithm_type is not None:
            validate_algorithm_type(algorithm_type)

        with self.store.session() as session:
            target = session.get(AlgorithmVersion, version_id, with_for_update=True)
            if target is None:
                raise Conflict(f"Cannot promote unknown version '{version_id}'")
            if algorithm_type is not None and target.algorithm_type != algorithm_type:
                raise Conflict(
                    f"Version '{version_id}' is {target.algorithm_type}, not {algorithm_type}"
                )
            self.activate(session, target)

        logger.info("Promoted %s v%d (%s)", target.algorithm_type, target.version, target.id,
                    extra={'algorithm_type': target.algorithm_type, 'version': target.version})
        return target

    def activate(self, session, target):
        """Deactivate the type's other versions, then activate target. Caller commits."""
        # Serialize concurrent promotions of the same type (no-op on SQLite,
        # which already takes a database-level write lock).
        session.query(AlgorithmVersion.id).filter(
            AlgorithmVersion.algorithm_type == target.algorithm_type,
        ).with_for_update().all()

        now = utcnow()
        # Order matters for the one-active partial index: clear first, then set.
        session.execute(
            update(AlgorithmVersion)
            .where(
                AlgorithmVersion.algorithm_type == target.algorithm_type,
                AlgorithmVersion.id != target.id,
                AlgorithmVersion.is_active.is_(True),
            )
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        session.execute(
            update(AlgorithmVersion)
            .where(AlgorithmVersion.id == target.id)
            .values(is_active=True, promoted_at=now)
            .execution_options(synchronize_session=False)
        )
        set_committed_value(target, 'is_active', True)
        set_committed_value(target, 'promoted_at', now)
        return target

    def update_performance(self, version_id, avg_accuracy=None, avg_error=None,
                           improvement_rate=None, total_tests=None):
        """Field-wise merge of performance stats. Last writer wins per field."""
        values = {
            'avg_accuracy': avg_accuracy,
            'avg_error': avg_error,
            'improvement_rate': improvement_rate,
            'total_tests': total_tests,
        }
        values = {k: v for k, v in values.items() if v is not None}
        for key, value in values.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ValidationError(f"Performance field '{key}' is not a finite number: {value!r}")

        with self.store.session() as session:
            row = session.get(AlgorithmVersion, version_id)
            if row is None:
                raise NotFound('version', version_id)
            for key in _PERFORMANCE_FIELDS:
                if key in values:
                    setattr(row, key, int(values[key]) if key == 'total_tests' else float(values[key]))

        logger.debug("Updated performance for %s: %s", version_id, values)
        return row
