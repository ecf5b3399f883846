"""
Response quality evaluator — deterministic heuristics that grade an agent reply.

    relevance  = 0.5 base + 0.3 * user-keyword overlap + 0.2 * analysis vocabulary
    accuracy   = 0.7 base + 0.1 each for technical terms, numbers, step structure
    usefulness = 0.5 base + 0.2 actionable + 0.15 examples + 0.1 links + 0.05 markdown

Each is capped at 1.0 and reported on 0-100; the composite score weights them
0.4 / 0.3 / 0.3 by default. Any callable with the same evaluate() signature can
be injected instead.
"""
import logging
import math
import re
from dataclasses import dataclass
from typing import Optional

from gaeo_learning.config import AGENT_TYPES, load_learning_config
from gaeo_learning.errors import ValidationError

logger = logging.getLogger('services.evaluator')

ANALYSIS_KEYWORDS = ['aeo', 'geo', 'seo', 'score', 'improve', 'optimiz']
TECHNICAL_TERMS = ['structured', 'schema', 'data', 'optimiz', 'algorithm', 'index', 'crawl']
ACTIONABLE_TERMS = ['add ', 'improve ', 'optimize ', 'implement ', 'configure ', 'include ', 'update ']

_NUMBER_RE = re.compile(r'\d+')
_STEPS_RE = re.compile(r'\bstep\b|^\s*\d+\.', re.IGNORECASE | re.MULTILINE)
_EXAMPLES_RE = re.compile(r'for example|e\.g\.|example:|```', re.IGNORECASE)
_LINKS_RE = re.compile(r'https?://|\bsee also\b|\breference', re.IGNORECASE)
_MARKDOWN_RE = re.compile(r'^#{1,6} |\*\*|^\s*[-*] |`|\[[^\]]+\]\(', re.MULTILINE)


def _score_field(value, name):
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValidationError(f"{name} must be a number, got {value!r}")
    if not 0 <= value <= 100:
        raise ValidationError(f"{name} must be within 0-100, got {value}")
    return float(value)


@dataclass
class Reward:
    """One evaluated response. All scores on 0-100."""
    agent_type: str
    score: float
    relevance: float
    accuracy: float
    usefulness: float
    feedback: Optional[str] = None

    def __post_init__(self):
        if self.agent_type not in AGENT_TYPES:
            raise ValidationError(f"Unknown agent type '{self.agent_type}'")
        for name in ('score', 'relevance', 'accuracy', 'usefulness'):
            setattr(self, name, _score_field(getattr(self, name), name))


class ResponseQualityEvaluator:

    def __init__(self, weights=None):
        weights = weights or load_learning_config().get('rewards', {}).get('weights', {})
        self.relevance_weight = float(weights.get('relevance', 0.4))
        self.accuracy_weight = float(weights.get('accuracy', 0.3))
        self.usefulness_weight = float(weights.get('usefulness', 0.3))

    def evaluate(self, agent_type, response_text, context=None) -> Reward:
        context = context or {}
        text = response_text or ''
        relevance = self.relevance(text, context)
        accuracy = self.accuracy(text)
        usefulness = self.usefulness(text)
        score = round(100 * (
            relevance * self.relevance_weight
            + accuracy * self.accuracy_weight
            + usefulness * self.usefulness_weight
        ))
        return Reward(
            agent_type=agent_type,
            score=min(100.0, max(0.0, float(score))),
            relevance=round(relevance * 100, 1),
            accuracy=round(accuracy * 100, 1),
            usefulness=round(usefulness * 100, 1),
        )

    @staticmethod
    def relevance(text, context):
        score = 0.5
        lowered = text.lower()

        user_message = context.get('user_message') or ''
        keywords = [w for w in user_message.lower().split() if len(w) > 2]
        if keywords:
            matched = sum(1 for kw in keywords if kw in lowered)
            score += matched / len(keywords) * 0.3

        if context.get('analysis'):
            matched = sum(1 for kw in ANALYSIS_KEYWORDS if kw in lowered)
            score += matched / len(ANALYSIS_KEYWORDS) * 0.2

        return min(1.0, score)

    @staticmethod
    def accuracy(text):
        score = 0.7
        lowered = text.lower()
        if any(term in lowered for term in TECHNICAL_TERMS):
            score += 0.1
        if _NUMBER_RE.search(text):
            score += 0.1
        if _STEPS_RE.search(text):
            score += 0.1
        return min(1.0, score)

    @staticmethod
    def usefulness(text):
        score = 0.5
        lowered = text.lower()
        if any(term in lowered for term in ACTIONABLE_TERMS):
            score += 0.2
        if _EXAMPLES_RE.search(text):
            score += 0.15
        if _LINKS_RE.search(text):
            score += 0.1
        if _MARKDOWN_RE.search(text):
            score += 0.05
        return min(1.0, score)
