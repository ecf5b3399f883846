"""
Logging setup for processes that host the learning engine.

create_learning_engine() calls configure_logging(); RQ jobs reach it through
the engine they build. Explicit arguments win over LOG_LEVEL and LOG_FORMAT,
which default to INFO and text.

Engine log calls attach context through `extra=`, e.g.

    logger.info("Promoted %s v%d", t, v, extra={'algorithm_type': t, 'version': v})

The JSON formatter emits those keys as top-level fields so aggregators can
filter on them; the text formatter appends them as key=value pairs.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone

# Context keys the engine passes via `extra=`
CONTEXT_FIELDS = ('algorithm_type', 'agent_type', 'version', 'finding_id', 'job_id')

LOG_FORMATS = ('text', 'json')

_TEXT_FORMAT = '[%(asctime)s] %(levelname)s %(name)s — %(message)s'

# Quiet at INFO unless LOG_LEVEL is DEBUG
_NOISY_LOGGERS = [
    'sqlalchemy.engine',
    'alembic.runtime.migration',
    'redis',
    'rq.worker',
]


def record_context(record):
    """The CONTEXT_FIELDS present on a record, in declaration order."""
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line, context fields at the top level."""

    def format(self, record):
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        entry.update(record_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ContextTextFormatter(logging.Formatter):

    def __init__(self):
        super().__init__(_TEXT_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    def formatMessage(self, record):
        line = super().formatMessage(record)
        context = record_context(record)
        if context:
            line += ' [' + ' '.join(f'{k}={v}' for k, v in context.items()) + ']'
        return line


def resolve_level(level=None):
    """Level number from an int, a name, or LOG_LEVEL. Unknown names fall back to INFO."""
    if isinstance(level, int):
        return level
    name = (level or os.getenv('LOG_LEVEL') or 'INFO').upper()
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


def configure_logging(level=None, log_format=None, stream=None):
    """
    Install a single stderr handler on the root logger.

    Args:
        level: int or level name; defaults to LOG_LEVEL, then INFO
        log_format: "text" or "json"; defaults to LOG_FORMAT, then text
        stream: handler target, sys.stderr when omitted

    Returns the installed handler. Calling it again replaces the handler.
    """
    level = resolve_level(level)
    log_format = (log_format or os.getenv('LOG_FORMAT') or 'text').lower()
    if log_format not in LOG_FORMATS:
        log_format = 'text'

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if log_format == 'json' else ContextTextFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    noisy_level = logging.NOTSET if level <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)

    return handler
