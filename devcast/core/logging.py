"""
Structured event logging.

Components take an event logger as a collaborator; the core never picks
file paths or output formats. ``configure_logging`` is called once by the
application entry point.

Usage:
    log = get_event_logger("AI")
    log.info("content_generated", content_id=content.id, provider="openai")
"""
import logging
import sys

import structlog

# Source tags
AI = "AI"
GITHUB = "GITHUB"
TELEGRAM = "TELEGRAM"
TWITTER = "TWITTER"
STORE = "STORE"
SCHEDULER = "SCHEDULER"


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog and stdlib logging to share one stream."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level)

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
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
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        cache_logger_on_first_use=True,
    )


def get_event_logger(source: str) -> structlog.stdlib.BoundLogger:
    """Get a logger bound with a source tag (AI, GITHUB, TELEGRAM, ...)."""
    return structlog.get_logger("devcast").bind(source=source)
