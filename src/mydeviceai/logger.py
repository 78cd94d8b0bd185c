"""Structured JSON logging for the host process."""

import sys

import structlog

# TRACE sits below DEBUG; structlog filters on the numeric value
LOG_LEVELS = {
    "TRACE": 5,
    "DEBUG": 10,
    "INFO": 20,
}

_configured_level: int | None = None


def configure_logging(level_name: str) -> None:
    """(Re)configure structlog when the configured level changes.

    Lines go to stderr so stdout stays free for the desktop shell's process pipe.
    """
    global _configured_level
    level = LOG_LEVELS.get(level_name.upper(), LOG_LEVELS["INFO"])
    if level == _configured_level:
        return

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
    _configured_level = level


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger that tags every line with ``logger=name``.

    Args:
        name: Logger name, usually ``__name__``
    """
    from mydeviceai.config import get_config

    config = get_config()
    if config.paths.logs_dir:
        config.paths.logs_dir.mkdir(parents=True, exist_ok=True)
    configure_logging(config.advanced.log_level)

    return structlog.get_logger(name).bind(logger=name)
