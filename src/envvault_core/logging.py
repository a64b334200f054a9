from __future__ import annotations

import logging
import re
import sys
from collections.abc import Callable, Mapping
from typing import Any


LOG_LEVEL_CHOICES = ("critical", "error", "warning", "info", "debug")

# Every envvault log line carries these, in this order.
STRUCTURED_FIELDS: tuple[tuple[str, Any], ...] = (
    ("request_id", ""),
    ("user", ""),
    ("repo", ""),
    ("component", ""),
    ("operation", ""),
    ("result", ""),
    ("duration_ms", 0),
    ("error_class", ""),
)

_SECRET_ASSIGNMENT = re.compile(r"(?i)(authorization|token|api_key|password|client_secret)=([^\s,;&]+)")
_BEARER_VALUE = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/=-]+")
_GITHUB_TOKEN = re.compile(r"\bgh[opsur]_[A-Za-z0-9]{6,}\b")


def redact_secrets(message: str) -> str:
    """Mask key=value secrets, bearer headers and bare GitHub tokens."""
    redacted = _SECRET_ASSIGNMENT.sub(r"\1=[redacted]", message)
    redacted = _BEARER_VALUE.sub("Bearer [redacted]", redacted)
    return _GITHUB_TOKEN.sub("[redacted]", redacted)


class StructuredLogDefaultsFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in STRUCTURED_FIELDS:
            if not hasattr(record, key):
                setattr(record, key, value)
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        cleaned = redact_secrets(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = ()
        return True


def structured_format() -> str:
    fields = " ".join(f"{key}=%({key})s" for key, _ in STRUCTURED_FIELDS)
    return f"%(asctime)s %(levelname)s %(name)s: {fields} %(message)s"


def normalize_log_level(value: Any, *, default: str = "info") -> str:
    candidate = str(value or "").strip().lower()
    if candidate in LOG_LEVEL_CHOICES:
        return candidate
    return default


def level_number(level: Any) -> int:
    return getattr(logging, normalize_log_level(level).upper(), logging.INFO)


def configure_structured_logger(logger: logging.Logger, *, level: str, stream: Any = None) -> None:
    """Route ``logger`` to stderr with the structured format; replaces prior handlers."""
    handler = logging.StreamHandler(stream if stream is not None else sys.__stderr__)
    handler.addFilter(StructuredLogDefaultsFilter())
    handler.setFormatter(logging.Formatter(structured_format()))
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(level_number(level))
    logger.propagate = False


def configure_domain_log_levels(
    *,
    domains: Mapping[str, Any] | None,
    logger_prefix: str,
    normalize_level: Callable[[Any], str] = normalize_log_level,
) -> list[str]:
    """Apply ``[logging.domains]`` levels; returns the logger names touched."""
    if not isinstance(domains, Mapping):
        return []
    configured: list[str] = []
    for domain, level_value in domains.items():
        suffix = str(domain or "").strip().lower().strip(".")
        if not suffix:
            continue
        name = f"{logger_prefix}.{suffix}"
        logging.getLogger(name).setLevel(level_number(normalize_level(level_value)))
        configured.append(name)
    return configured
