import logging
import sys
from hist_equalizer.config import settings

LEVELS = {
    'DEBUG': logging.DEBUG,
    'INFO': logging.INFO,
    'WARNING': logging.WARNING,
    'ERROR': logging.ERROR,
    'CRITICAL': logging.CRITICAL
}


def _resolve(level_name):
    """Level constant for a name; unknown names fall back to INFO."""
    return LEVELS.get(str(level_name).upper(), logging.INFO)


log_level = _resolve(getattr(settings, 'LOGGING_LEVEL', 'INFO'))

# Results go to stdout, so diagnostics go to stderr
console_handler = logging.StreamHandler(sys.stderr)
console_handler.setFormatter(logging.Formatter(settings.LOG_FORMAT))

# Every logger handed out, so set_level can reach modules imported earlier
_loggers = {}


def get_logger(name):
    """
    Gets a logger instance configured with the application's settings.
    """
    logger = logging.getLogger(name)
    logger.setLevel(log_level)

    # One shared handler, even if get_logger is called repeatedly for a name
    if console_handler not in logger.handlers:
        logger.addHandler(console_handler)
    logger.propagate = False

    _loggers[name] = logger
    return logger


def set_level(level_name):
    """Change the level of every application logger (e.g. 'DEBUG' for -v)."""
    global log_level
    log_level = _resolve(level_name)
    for logger in _loggers.values():
        logger.setLevel(log_level)
    return log_level
