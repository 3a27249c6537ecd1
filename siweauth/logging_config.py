"""
Structured logging for the sign-in service.

Every event carries the SIWE domain and chain id the process verifies for.
Nonces and signatures are shortened before rendering.
"""

import logging
import sys
from typing import Any, MutableMapping, Optional

import structlog

from .config import Settings, settings as default_settings

# visible prefix kept from secrets written to logs
SECRET_PREFIX_CHARS = 8
SECRET_FIELDS = ("nonce", "signature")


def redact_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for key in SECRET_FIELDS:
        value = event_dict.get(key)
        if isinstance(value, str) and len(value) > SECRET_PREFIX_CHARS:
            event_dict[key] = value[:SECRET_PREFIX_CHARS] + "..."
    return event_dict


def service_context(config: Settings) -> structlog.types.Processor:
    """Processor that stamps the verifying domain and chain onto each event."""

    def add_service_context(
        logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        event_dict.setdefault("siwe_domain", config.siwe_domain)
        event_dict.setdefault("siwe_chain_id", config.siwe_chain_id)
        return event_dict

    return add_service_context


def setup_logging(log_level: Optional[str] = None, config: Optional[Settings] = None) -> None:
    """Configure structlog and route stdlib logging through it.

    Args:
        log_level: Override log level (default: from settings.log_level)
        config: Settings to read domain, format and quiet loggers from
    """
    config = config or default_settings
    level = getattr(logging, (log_level or config.log_level).upper(), logging.INFO)
    if config.log_format == "auto":
        use_console = level == logging.DEBUG
    else:
        use_console = config.log_format == "console"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        service_context(config),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if use_console:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in config.log_quiet_loggers:
        logging.getLogger(name).setLevel(logging.WARNING)
