"""Structured rendering for TenantGuard's stdlib loggers.

Every module logs through ``logging.getLogger(__name__)``. A structlog
``ProcessorFormatter`` on the root handler turns those records into JSON
lines or console output.
"""

from __future__ import annotations

import logging
import sys

import structlog

_configured = False


def configure_logging(*, level: str = "INFO", json_output: bool = False, force: bool = False) -> None:
    """Install the root handler once; ``force`` replaces an existing setup."""
    global _configured
    if _configured and not force:
        return
    _configured = True

    pre_chain: list = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if json_output:
        # ConsoleRenderer formats tracebacks itself.
        pre_chain.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
