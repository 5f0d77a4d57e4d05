"""
logging_config.py - Structured Logging
Configures structlog once per application.

Console output in development, one JSON object per line otherwise.
Usage:
    logger = get_logger(__name__)
    logger.info("grades_updated", course_id=3, changes=5)
"""

import logging
import sys

import structlog


def setup_logging(app):
    """
    Configure structlog and the standard library logger from app config

    Args:
        app: Flask app whose config provides LOG_LEVEL and LOG_JSON
    """
    log_level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if app.config.get('LOG_JSON'):
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=app.debug),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    # Third-party loggers are noisy at DEBUG
    for logger_name in ['sqlalchemy', 'werkzeug']:
        logging.getLogger(logger_name).setLevel(max(log_level, logging.WARNING))


def get_logger(name):
    """Return a structlog logger bound to the given module name"""
    return structlog.get_logger(name)
