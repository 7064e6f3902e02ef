import logging
import sys
import structlog
from incident_lens.core.config import get_settings

# Chatty third-party loggers kept at WARNING so the JSON stream stays readable
QUIET_LOGGERS = ("urllib3", "multipart", "httpx")


def setup_logging():
    """
    JSON log lines on stdout. Safe to call more than once: the API module and
    the batch runner both call it at startup.
    """
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    structlog.contextvars.bind_contextvars(env=settings.app_env)


def get_logger():
    return structlog.get_logger(service=get_settings().service_name)
