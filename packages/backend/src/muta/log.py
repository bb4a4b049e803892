"""structlog configuration.

Learn: Modules never build their own loggers — they call
structlog.get_logger() and log dotted event names with keyword context:

    logger.info("orders.created", order_id=order.id)

merge_contextvars pulls in whatever RequestIdMiddleware bound for the
current request, so every line of a request carries its request_id.
"""

import logging

import structlog


def configure_logging(level: str = "info", log_format: str = "json") -> None:
    """Configure structlog once at app creation."""
    renderer = (
        structlog.dev.ConsoleRenderer()
        if log_format == "console"
        else structlog.processors.JSONRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        cache_logger_on_first_use=False,
    )
