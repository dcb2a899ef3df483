"""
Logging setup for applications embedding chainwatch.

Components log through the stdlib (`logging.getLogger(__name__)`) and emit
lifecycle events through structlog; this wires both into one handler.
"""

import logging
import sys
from typing import IO, Any, Optional

import structlog

from .config import settings
from .core.chains import get_registry

QUIET_LOGGERS = ("httpcore", "httpx")


def add_chain_name(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Annotate events that carry a chain id with the chain's display name."""
    if "chain" not in event_dict:
        chain_id = event_dict.get("chain_id", event_dict.get("source_chain_id"))
        if chain_id is not None:
            event_dict["chain"] = get_registry().chain_name(chain_id)
    return event_dict


def setup_logging(
    log_level: Optional[str] = None,
    *,
    json_logs: Optional[bool] = None,
    stream: Optional[IO[str]] = None,
) -> None:
    """Install a structlog-formatted handler on the root logger.

    Args:
        log_level: Level name (default: settings.log_level)
        json_logs: JSON lines when True, console rendering when False;
            defaults to console only at DEBUG
        stream: Output stream (default: stdout)
    """
    level_name = (log_level or settings.log_level).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO
    if json_logs is None:
        json_logs = level != logging.DEBUG

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        add_chain_name,
    ]
    if json_logs:
        pre_chain.append(structlog.processors.format_exc_info)
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
