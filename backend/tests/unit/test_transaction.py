import json
import logging
from unittest.mock import Mock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from lending.core.exceptions import ConflictError, InternalError
from lending.core.logging_config import ConsoleFormatter, JSONFormatter
from lending.core.db import mask_params
from lending.db.base import AuditLog
from lending.repositories.audit_repository import AuditRepository
from lending.services.transaction import atomic


def count_audit_rows(session_factory):
    with session_factory() as db:
        return len(db.execute(select(AuditLog)).scalars().all())


@pytest.mark.integration
def test_atomic_commits_on_success(session_factory):
    with atomic(session_factory, "test_commit") as db:
        AuditRepository(db).record("noop_check")

    assert count_audit_rows(session_factory) == 1


@pytest.mark.integration
def test_atomic_rolls_back_and_reraises_lending_errors(session_factory):
    with pytest.raises(ConflictError):
        with atomic(session_factory, "test_conflict") as db:
            AuditRepository(db).record("noop_check")
            raise ConflictError("item unavailable")

    assert count_audit_rows(session_factory) == 0


@pytest.mark.unit
def test_atomic_wraps_storage_failures(caplog):
    session = Mock()
    session.commit.side_effect = OperationalError("COMMIT", {}, Exception("disk I/O error"))

    with caplog.at_level(logging.ERROR):
        with pytest.raises(InternalError) as exc:
            with atomic(lambda: session, "reserve", item_id=4):
                pass

    session.rollback.assert_called_once()
    session.close.assert_called_once()
    assert "correlation_id" in exc.value.context
    assert "reserve failed, transaction rolled back" in caplog.text


@pytest.mark.unit
def test_atomic_rolls_back_unexpected_errors():
    session = Mock()

    with pytest.raises(KeyError):
        with atomic(lambda: session, "noop"):
            raise KeyError("boom")

    session.rollback.assert_called_once()
    session.commit.assert_not_called()


@pytest.mark.unit
def test_json_formatter_includes_context():
    record = logging.LogRecord("lending.test", logging.INFO, __file__, 10, "hello", (), None)
    record.context = {"item_id": 4}

    payload = json.loads(JSONFormatter().format(record))

    assert payload["message"] == "hello"
    assert payload["level"] == "INFO"
    assert payload["context"] == {"item_id": 4}


@pytest.mark.unit
def test_console_formatter_keeps_original_level_name():
    record = logging.LogRecord("lending.test", logging.WARNING, __file__, 10, "slow", (), None)
    record.context = {"duration_ms": 120}

    rendered = ConsoleFormatter("%(levelname)s %(message)s").format(record)

    assert rendered.endswith('| {"duration_ms": 120}')
    assert record.levelname == "WARNING"


@pytest.mark.unit
def test_mask_params_hides_sensitive_values():
    masked = mask_params({"handover_token": "LOT-1", "item_id": 3, "nested": [{"email": "a@b"}]})

    assert masked["handover_token"] == "***"
    assert masked["item_id"] == "3"
    assert masked["nested"] == [{"email": "***"}]
