import logging
import os
import uuid

LOG_LEVEL_ENV = 'PLAYIT_LOG_LEVEL'
_FORMAT = '%(asctime)s %(levelname)s %(name)s [cid=%(cid)s attempt=%(attempt)s]: %(message)s'


class _ContextDefaults(logging.Filter):
    """Fill cid/attempt for records logged without ``with_context``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'cid'):
            record.cid = '-'
        if not hasattr(record, 'attempt'):
            record.attempt = 0
        return True


def _level() -> int:
    name = (os.environ.get(LOG_LEVEL_ENV) or 'INFO').upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler.addFilter(_ContextDefaults())
        logger.addHandler(handler)
        logger.setLevel(_level())
    return logger


def with_context(logger: logging.Logger, attempt: int = 0, cid: str | None = None):
    """Bind a correlation id to every record emitted through the adapter.

    Pass the cid of an earlier adapter to tie a retry to the first attempt.
    """
    if cid is None:
        cid = uuid.uuid4().hex[:8]
    return logging.LoggerAdapter(logger, {'cid': cid, 'attempt': attempt}), cid
