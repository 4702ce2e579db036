import json
import logging

import pytest

from app.config import DEFAULT_SECRET_KEY, Settings
from app.utils.logging import JSONFormatter, log_security_event


def test_json_formatter_carries_tenant_and_security_fields():
    record = logging.LogRecord("app.test", logging.WARNING, __file__, 10, "SECURITY EVENT: x", None, None)
    record.tenant_id = "tenant-1"
    record.security_event = True
    record.event_type = "failed_login"

    data = json.loads(JSONFormatter().format(record))

    assert data["message"] == "SECURITY EVENT: x"
    assert data["tenant_id"] == "tenant-1"
    assert data["security_event"] is True
    assert data["event_type"] == "failed_login"


def test_json_formatter_masks_tokens_and_passwords():
    message = "Authorization: Bearer eyJabc.def password=Abc12345!"
    record = logging.LogRecord("app.test", logging.INFO, __file__, 10, message, None, None)

    data = json.loads(JSONFormatter().format(record))

    assert "eyJabc" not in data["message"]
    assert "Abc12345!" not in data["message"]
    assert data["message"] == "Authorization: Bearer *** password=***"


def test_log_security_event_emits_tagged_warning(caplog):
    logger = logging.getLogger("app.test.security")

    with caplog.at_level(logging.WARNING, logger="app.test.security"):
        log_security_event("failed_login", {"reason": "unknown_email", "message": "dropped"}, logger)

    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert record.event_type == "failed_login"
    assert record.reason == "unknown_email"
    assert record.getMessage() == "SECURITY EVENT: failed_login"


def test_production_refuses_default_secret_key():
    settings = Settings(ENVIRONMENT="production", SECRET_KEY=DEFAULT_SECRET_KEY)

    with pytest.raises(RuntimeError):
        settings.validate_for_startup()


def test_read_database_url_falls_back_to_write_url():
    settings = Settings(DATABASE_URL="sqlite://", DATABASE_READ_URL=None)

    assert settings.read_database_url == "sqlite://"
    assert Settings(DATABASE_URL="sqlite://", DATABASE_READ_URL="sqlite:///replica.db").read_database_url == "sqlite:///replica.db"
