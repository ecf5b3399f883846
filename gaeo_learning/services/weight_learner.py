"""
Weight learner — pure functions that turn evidence into a new weight vector.

Two sources of evidence:
  1. A/B tests with ground truth: the scoring model is treated as a linear
     sum of factor values times weights, and weights take one bounded
     sub-gradient step on mean absolute error against the actual scores.
  2. Research findings: a bounded additive delta per factor.

Nothing here touches the store.
"""
import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from gaeo_learning.config import load_learning_config
from gaeo_learning.errors import ValidationError

logger = logging.getLogger('services.weight_learner')


@dataclass
class LearningResult:
    weights: Dict[str, float]
    improvement_rate: float = 0.0
    old_error: float = 0.0
    new_error: float = 0.0
    sample_size: int = 0
    changed_factors: List[str] = field(default_factory=list)


def _field(record, name):
    if isinstance(record, dict):
        return record.get(name)
    return getattr(record, name, None)


def _clamp(value, low, high):
    return max(low, min(high, value))


def _mean_abs(weights):
    values = [abs(v) for v in weights.values()]
    mean = sum(values) / len(values) if values else 0.0
    return mean if mean > 0 else 1.0


def predict(weights, features):
    """Weighted factor sum. Features without a weight contribute nothing."""
    return sum(weights[f] * float(x) for f, x in (features or {}).items() if f in weights)


def mean_absolute_error(weights, samples):
    if not samples:
        return 0.0
    return sum(abs(predict(weights, feats) - actual) for feats, actual in samples) / len(samples)


def usable_samples(test_records):
    """(features, actual_score) pairs from records that carry both."""
    samples = []
    for record in test_records or []:
        actual = _field(record, 'actual_score')
        features = _field(record, 'features')
        if actual is None or not features:
            continue
        samples.append(({k: float(v) for k, v in features.items()}, float(actual)))
    return samples


def learn_weights(test_records, weights, learning_rate=0.05, max_step_ratio=0.10,
                  min_step=0.01, weight_floor=0.0, weight_ceiling=100.0,
                  max_backtracks=8) -> LearningResult:
    """
    One bounded learning round over a batch of tests.

    Only records with both actual_score and features are used. Each factor
    moves by at most max_step_ratio * max(|w|, min_step); the step is halved
    until the batch error strictly drops, otherwise the input weights come
    back unchanged. Factors never observed in the batch are left alone.
    """
    weights = {k: float(v) for k, v in (weights or {}).items()}
    samples = usable_samples(test_records)
    if not samples:
        return LearningResult(weights=dict(weights))

    old_error = mean_absolute_error(weights, samples)
    if old_error == 0:
        return LearningResult(weights=dict(weights), sample_size=len(samples))

    # Sub-gradient of MAE: mean(sign(pred - actual) * x_f)
    gradient = {}
    for feats, actual in samples:
        residual = predict(weights, feats) - actual
        sign = (residual > 0) - (residual < 0)
        for factor, value in feats.items():
            if factor in weights:
                gradient[factor] = gradient.get(factor, 0.0) + sign * value
    gradient = {f: g / len(samples) for f, g in gradient.items() if g != 0}

    if not gradient:
        return LearningResult(weights=dict(weights), old_error=old_error,
                              new_error=old_error, sample_size=len(samples))

    step = {}
    for factor, g in gradient.items():
        cap = max_step_ratio * max(abs(weights[factor]), min_step)
        step[factor] = _clamp(-learning_rate * old_error * g, -cap, cap)

    scale = 1.0
    for _ in range(max_backtracks + 1):
        candidate = dict(weights)
        for factor, s in step.items():
            candidate[factor] = round(
                _clamp(weights[factor] + s * scale, weight_floor, weight_ceiling), 6
            )
        new_error = mean_absolute_error(candidate, samples)
        if new_error < old_error:
            rate = _clamp((old_error - new_error) / old_error, -1.0, 1.0)
            changed = [f for f in step if candidate[f] != weights[f]]
            return LearningResult(
                weights=candidate,
                improvement_rate=rate,
                old_error=old_error,
                new_error=new_error,
                sample_size=len(samples),
                changed_factors=changed,
            )
        scale /= 2

    logger.debug("No improving step found after %d backtracks", max_backtracks)
    return LearningResult(weights=dict(weights), old_error=old_error,
                          new_error=old_error, sample_size=len(samples))


def max_delta_for(current_weights, factor, max_delta_ratio=0.20):
    """Largest change one finding may apply to factor."""
    current = float(current_weights.get(factor, 0.0) or 0.0)
    if current:
        return max_delta_ratio * abs(current)
    return max_delta_ratio * _mean_abs(current_weights)


def validate_delta(delta):
    if not isinstance(delta, dict):
        raise ValidationError("suggested weight delta must be a mapping of factor -> number")
    for factor, value in delta.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
            raise ValidationError(f"Delta for '{factor}' is not a finite number: {value!r}")


def adjust_weights_from_research(current_weights, suggested_delta, max_delta_ratio=0.20,
                                 weight_floor=0.0, weight_ceiling=100.0):
    """
    Apply a bounded additive delta. Factors not named in the delta are untouched;
    a factor absent from current_weights is added, bounded against the mean
    magnitude of the existing weights.
    """
    validate_delta(suggested_delta)
    adjusted = {k: float(v) for k, v in current_weights.items()}
    for factor, delta in suggested_delta.items():
        current = adjusted.get(factor, 0.0)
        bound = max_delta_for(current_weights, factor, max_delta_ratio)
        target = _clamp(current + _clamp(float(delta), -bound, bound), weight_floor, weight_ceiling)
        # Range clamping must not push an out-of-range weight further than the bound.
        adjusted[factor] = current + _clamp(target - current, -bound, bound)
    return adjusted


def delta_from_impacts(current_weights, impacts):
    """
    Convert [{factor, impact, confidence}] items into an additive delta:
    w * impact * confidence, with the mean weight magnitude standing in for
    factors the vector does not carry yet.
    """
    delta = {}
    for item in impacts or []:
        factor = _field(item, 'factor')
        if not factor:
            raise ValidationError(f"Impact without a factor: {item!r}")
        impact = _field(item, 'impact')
        confidence = _field(item, 'confidence')
        confidence = 1.0 if confidence is None else confidence
        for name, value in (('impact', impact), ('confidence', confidence)):
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ValidationError(f"Impact '{factor}' has invalid {name}: {value!r}")
        base = float(current_weights.get(factor, 0.0) or 0.0) or _mean_abs(current_weights)
        delta[factor] = delta.get(factor, 0.0) + base * float(impact) * float(confidence)
    return delta


class WeightLearner:
    """Binds the learner functions to the configured bounds."""

    def __init__(self, config: Optional[dict] = None):
        config = config or load_learning_config()
        learner = config.get('learner', {})
        self.learning_rate = float(learner.get('learning_rate', 0.05))
        self.max_step_ratio = float(learner.get('max_step_ratio', 0.10))
        self.min_step = float(learner.get('min_step', 0.01))
        self.weight_floor = float(learner.get('weight_floor', 0.0))
        self.weight_ceiling = float(learner.get('weight_ceiling', 100.0))
        self.max_backtracks = int(learner.get('max_backtracks', 8))
        self.max_delta_ratio = float(config.get('research', {}).get('max_delta_ratio', 0.20))

    def predict(self, weights, features):
        return predict(weights, features)

    def learn_weights(self, algorithm_type, test_records, weights) -> LearningResult:
        result = learn_weights(
            test_records, weights,
            learning_rate=self.learning_rate,
            max_step_ratio=self.max_step_ratio,
            min_step=self.min_step,
            weight_floor=self.weight_floor,
            weight_ceiling=self.weight_ceiling,
            max_backtracks=self.max_backtracks,
        )
        logger.info("Learned %s weights: n=%d error %.3f -> %.3f (rate=%.4f)",
                    algorithm_type, result.sample_size, result.old_error,
                    result.new_error, result.improvement_rate)
        return result

    def adjust_weights_from_research(self, current_weights, suggested_delta):
        return adjust_weights_from_research(
            current_weights, suggested_delta,
            max_delta_ratio=self.max_delta_ratio,
            weight_floor=self.weight_floor,
            weight_ceiling=self.weight_ceiling,
        )

    def max_delta_for(self, current_weights, factor):
        return max_delta_for(current_weights, factor, self.max_delta_ratio)

    def delta_from_impacts(self, current_weights, impacts):
        return delta_from_impacts(current_weights, impacts)
