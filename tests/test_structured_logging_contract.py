from __future__ import annotations

import io
import logging

from envvault_core import logging as core_logging


REQUIRED_KEYS = (
    "request_id",
    "user",
    "repo",
    "component",
    "operation",
    "result",
    "duration_ms",
    "error_class",
)


def _record(msg: str, *args: object) -> logging.LogRecord:
    return logging.LogRecord(
        name="envvault_hub",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=args,
        exc_info=None,
    )


def test_structured_log_filter_injects_required_defaults() -> None:
    record = _record("hello")

    filter_obj = core_logging.StructuredLogDefaultsFilter()
    assert filter_obj.filter(record) is True
    for key in REQUIRED_KEYS:
        assert hasattr(record, key)


def test_structured_log_filter_redacts_secret_assignments() -> None:
    record = _record("callback token=%s client_secret=%s user=alice", "gho_abc123", "s3cr3t")

    core_logging.StructuredLogDefaultsFilter().filter(record)
    message = record.getMessage()
    assert "gho_abc123" not in message
    assert "s3cr3t" not in message
    assert "token=[redacted]" in message
    assert "user=alice" in message


def test_configured_logger_emits_required_fields() -> None:
    logger = logging.getLogger("envvault_hub.structured_contract_test")
    core_logging.configure_structured_logger(logger, level="info")
    stream = io.StringIO()
    handler = logger.handlers[0]
    assert isinstance(handler, logging.StreamHandler)
    handler.setStream(stream)

    logger.info(
        "event",
        extra={"component": "env", "operation": "push", "result": "stored", "duration_ms": 12, "repo": "o/r"},
    )
    text = stream.getvalue()
    for key in REQUIRED_KEYS:
        assert f"{key}=" in text
    assert "component=env" in text
    assert "operation=push" in text
    assert "result=stored" in text
    assert "duration_ms=12" in text
    assert "repo=o/r" in text
    assert logger.propagate is False


def test_normalize_log_level_falls_back_to_default() -> None:
    assert core_logging.normalize_log_level("DEBUG") == "debug"
    assert core_logging.normalize_log_level("chatty") == "info"
    assert core_logging.normalize_log_level(None, default="warning") == "warning"


def test_domain_log_levels_apply_to_prefixed_loggers() -> None:
    core_logging.configure_domain_log_levels(
        domains={"GitHub": "debug", "": "error"},
        logger_prefix="envvault_hub",
        normalize_level=core_logging.normalize_log_level,
    )
    assert logging.getLogger("envvault_hub.github").level == logging.DEBUG


def test_redact_secrets_masks_bearer_headers_and_github_tokens() -> None:
    text = core_logging.redact_secrets("header Authorization: Bearer gho_abcdef123456 for alice; saw ghp_ZZZZZZZZZZ")
    assert "gho_abcdef123456" not in text
    assert "ghp_ZZZZZZZZZZ" not in text
    assert "Bearer [redacted]" in text
    assert "alice" in text
