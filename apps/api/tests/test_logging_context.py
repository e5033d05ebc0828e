from __future__ import annotations

import io
import json
import logging
from collections.abc import Generator

import pytest

from agencycrm.context import get_log_context, new_run_id, reset_actor, reset_run_id, set_actor, set_run_id
from agencycrm.logging import JsonLogFormatter, RunIdFilter, configure_logging


@pytest.fixture()
def json_logger() -> Generator[tuple[logging.Logger, io.StringIO], None, None]:
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(RunIdFilter())
    logger = logging.getLogger("agencycrm.tests.json")
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    try:
        yield logger, stream
    finally:
        logger.removeHandler(handler)
        logger.propagate = True


@pytest.fixture()
def restore_root_logger() -> Generator[None, None, None]:
    root = logging.getLogger()
    level = root.level
    factory = logging.getLogRecordFactory()
    try:
        yield
    finally:
        for handler in list(root.handlers):
            if isinstance(handler.formatter, JsonLogFormatter):
                root.removeHandler(handler)
        root.setLevel(level)
        logging.setLogRecordFactory(factory)
        if hasattr(root, "_agencycrm_configured"):
            delattr(root, "_agencycrm_configured")


def test_json_log_includes_run_id_and_known_fields(json_logger: tuple[logging.Logger, io.StringIO]) -> None:
    logger, stream = json_logger
    token = set_run_id("run-123")
    try:
        logger.info(
            "migration.batch_processed",
            extra={"batch_offset": 100, "batch_rows": 42, "unexpected_field": "dropped"},
        )
    finally:
        reset_run_id(token)

    payload = json.loads(stream.getvalue().strip())
    assert payload["msg"] == "migration.batch_processed"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "agencycrm.tests.json"
    assert payload["run_id"] == "run-123"
    assert payload["fields"] == {"batch_offset": 100, "batch_rows": 42}


def test_json_log_truncates_long_errors(json_logger: tuple[logging.Logger, io.StringIO]) -> None:
    logger, stream = json_logger

    logger.warning("migration.record_failed", extra={"error": "x" * 800, "policy_number": "POL-1"})

    payload = json.loads(stream.getvalue().strip())
    assert len(payload["fields"]["error"]) == 500
    assert payload["fields"]["policy_number"] == "POL-1"
    assert payload["run_id"] is None


def test_json_log_stamps_actor_from_context(json_logger: tuple[logging.Logger, io.StringIO]) -> None:
    logger, stream = json_logger
    logger.info("migration.validation_completed")
    token = set_actor("operator")
    try:
        logger.info("migration.backup_created", extra={"backup_id": "policy_backup_1"})
    finally:
        reset_actor(token)

    default_line, operator_line = [json.loads(line) for line in stream.getvalue().strip().splitlines()]
    assert default_line["actor"] == "system"
    assert operator_line["actor"] == "operator"
    assert operator_line["fields"] == {"backup_id": "policy_backup_1"}


def test_run_context_defaults() -> None:
    assert get_log_context() == {"run_id": None, "actor": "system"}

    run_token = set_run_id(new_run_id())
    actor_token = set_actor("operator")
    try:
        context = get_log_context()
        assert context["actor"] == "operator"
        assert context["run_id"] is not None
        assert len(context["run_id"]) == 32
    finally:
        reset_actor(actor_token)
        reset_run_id(run_token)


def test_configure_logging_is_idempotent(restore_root_logger: None, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "debug")
    stream = io.StringIO()

    configure_logging(stream)
    configure_logging(io.StringIO())

    root = logging.getLogger()
    assert len(root.handlers) == 1
    assert root.level == logging.DEBUG

    token = set_run_id("run-xyz")
    try:
        logging.getLogger("agencycrm.tests.root").info("migration.completed", extra={"status": "SUCCESS"})
    finally:
        reset_run_id(token)

    payload = json.loads(stream.getvalue().strip().splitlines()[-1])
    assert payload["run_id"] == "run-xyz"
    assert payload["fields"] == {"status": "SUCCESS"}
