"""
Structured logging configuration.

structlog events are routed through stdlib logging to up to two handlers:

- JSON file, when `logging.file` is set. Always DEBUG and above.
- Console on stderr, rendered for humans. Its level comes from
  `logging.level` ("human" is the same as "info") and is lowered by -v:
  -v shows at least INFO, -vv shows DEBUG. --quiet and --json remove it
  so stdout/stderr stay clean for pipes.

httpx, httpcore, LiteLLM and uvicorn.access are held at WARNING unless -vvv.
"""

import logging
import sys
from pathlib import Path

import structlog

from ..config.schema import LoggingConfig

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "human": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

_NOISY_LOGGERS = ("httpx", "httpcore", "LiteLLM", "uvicorn.access")

_PRE_CHAIN = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", utc=True),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
]


def configure_logging(
    config: LoggingConfig,
    json_output: bool = False,
    quiet: bool = False,
) -> None:
    """(Re)configure structlog and the root logger.

    Safe to call more than once; previous handlers are dropped.

    Args:
        config: level, file and verbose count
        json_output: --json was given (no console output)
        quiet: --quiet was given (no console output)
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.DEBUG)
    structlog.reset_defaults()

    if not (quiet or json_output):
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
        console = logging.StreamHandler(sys.stderr)
        console.setLevel(_console_level(config))
        console.setFormatter(_formatter(renderer))
        root.addHandler(console)

    if config.file:
        root.addHandler(_file_handler(Path(config.file)))

    if config.verbose < 3:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=_PRE_CHAIN + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _formatter(renderer) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=_PRE_CHAIN,
    )


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    return handler


def _console_level(config: LoggingConfig) -> int:
    """Console level from config.level and the -v count.

    no -v  -> config.level
    -v     -> INFO at most
    -vv    -> DEBUG
    """
    if config.verbose >= 2:
        return logging.DEBUG
    level = _LEVELS[config.level]
    if config.verbose == 1:
        return min(logging.INFO, level)
    return level
