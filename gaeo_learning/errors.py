"""
Error taxonomy for the learning engine.

Read paths (active version, A/B summaries, optimized prompts) degrade to
defaults instead of raising; these are raised from mutating paths only.
"""


class LearningEngineError(Exception):
    """Base class for all engine errors."""


class NotFound(LearningEngineError):
    """Unknown version / finding / template / test id."""
    def __init__(self, kind, id):
        self.kind = kind
        self.id = id
        super().__init__(f"{kind} '{id}' not found")


class Conflict(LearningEngineError):
    """Promotion target is missing or belongs to a different algorithm type."""


class ValidationError(LearningEngineError):
    """Malformed weights, unknown algorithm/agent/span type, out-of-range score."""


class PersistenceError(LearningEngineError):
    """Store unavailable or a write failed."""


class NotInitialized(LearningEngineError):
    """No active version exists and the caller required one."""
    def __init__(self, algorithm_type):
        self.algorithm_type = algorithm_type
        super().__init__(f"No active version for algorithm type '{algorithm_type}'")
