"""Structured logging configuration.

JSON output for production, colored console for development/testing.
Call configure_logging() once at application startup (FastAPI lifespan).

Request-scoped values (``request_id``) are bound through
``structlog.contextvars`` by the request middleware and merged into
every event emitted while the request is in flight, including events
from the admission pipeline's worker thread.
"""

import ipaddress
import logging
import sys

import structlog

SENSITIVE_KEYS: frozenset[str] = frozenset(
    {"password", "secret", "token", "authorization", "database_url", "redis_url"}
)

# Keys carrying a caller address; truncated when masking is enabled.
CLIENT_IP_KEYS: frozenset[str] = frozenset({"client_ip", "ip"})
IPV4_MASK_PREFIX = 24
IPV6_MASK_PREFIX = 48

NOISY_LOGGERS: tuple[str, ...] = ("uvicorn.access", "sqlalchemy.engine")


def _redact_sensitive_keys(
    logger: logging.Logger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Redact values of sensitive keys in log events."""
    for key in event_dict:
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = "***REDACTED***"
    return event_dict


def mask_ip(value: str) -> str:
    """Reduce an address to its network (/24 for IPv4, /48 for IPv6).

    Values that are not IP addresses are returned unchanged.
    """
    try:
        address = ipaddress.ip_address(value.strip())
    except ValueError:
        return value
    prefix = IPV4_MASK_PREFIX if address.version == 4 else IPV6_MASK_PREFIX
    return str(ipaddress.ip_network(f"{address}/{prefix}", strict=False))


def _mask_client_ips(
    logger: logging.Logger,
    method_name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    for key in CLIENT_IP_KEYS & event_dict.keys():
        value = event_dict[key]
        if isinstance(value, str):
            event_dict[key] = mask_ip(value)
    return event_dict


def _renderer_for(environment: str) -> structlog.types.Processor:
    if environment == "production":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=True)


def configure_logging(
    environment: str = "development",
    log_level: str = "INFO",
    *,
    mask_client_ips: bool = False,
) -> None:
    """Configure structlog processor chain and stdlib root logger.

    Args:
        environment: 'production' for JSON output, anything else
            for colored console output.
        log_level: Python log level name (DEBUG, INFO, WARNING, etc.).
        mask_client_ips: Truncate caller addresses to their network
            before rendering.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _redact_sensitive_keys,
    ]
    if mask_client_ips:
        shared_processors.append(_mask_client_ips)

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
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _renderer_for(environment),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
