"""Tests for structured logging and audit log events.

Verifies that:
- AG_LOG_FORMAT=json produces JSON lines carrying request and audit fields.
- AG_LOG_LEVEL controls the effective log level.
- The request middleware assigns X-Request-ID.
- Denials, token failures and role changes reach the awareguard.audit logger.
"""

from __future__ import annotations

import json
import logging
import sys

import pytest

from awareguard.logging_config import StructuredJsonFormatter, log_startup_info, setup_logging


def _record(msg: str = "hello world", level: int = logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="awareguard",
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)


# ---------------------------------------------------------------------------
# StructuredJsonFormatter
# ---------------------------------------------------------------------------


class TestStructuredJsonFormatter:
    def test_basic_log_record_is_valid_json(self):
        parsed = json.loads(StructuredJsonFormatter().format(_record()))
        assert parsed["message"] == "hello world"
        assert parsed["levelname"] == "INFO"
        assert "asctime" in parsed

    def test_request_fields_appear_in_json(self):
        record = _record("request finished")
        record.request_id = "abc12345"
        record.path = "/health"
        record.method = "GET"
        record.status_code = 200
        record.duration_ms = 12.3
        parsed = json.loads(StructuredJsonFormatter().format(record))
        assert parsed["request_id"] == "abc12345"
        assert parsed["path"] == "/health"
        assert parsed["status_code"] == 200
        assert parsed["duration_ms"] == 12.3

    def test_audit_fields_appear_in_json(self):
        record = _record("role changed")
        record.event_category = "audit"
        record.action = "role_changed"
        record.actor = "user_admin"
        record.target = "user_employee"
        parsed = json.loads(StructuredJsonFormatter().format(record))
        assert parsed["event_category"] == "audit"
        assert parsed["action"] == "role_changed"
        assert parsed["actor"] == "user_admin"
        assert parsed["target"] == "user_employee"

    def test_traceback_is_a_list(self):
        try:
            raise ValueError("boom")
        except ValueError:
            exc_info = sys.exc_info()
        parsed = json.loads(
            StructuredJsonFormatter().format(_record("failed", logging.ERROR, exc_info))
        )
        assert isinstance(parsed["traceback"], list)
        assert "boom" in "".join(parsed["traceback"])


# ---------------------------------------------------------------------------
# setup_logging / log_startup_info
# ---------------------------------------------------------------------------


class TestSetupLogging:
    def test_json_mode(self, monkeypatch, restore_root_logger):
        monkeypatch.setenv("AG_LOG_FORMAT", "json")
        setup_logging()
        assert len(restore_root_logger.handlers) == 1
        assert isinstance(restore_root_logger.handlers[0].formatter, StructuredJsonFormatter)

    def test_default_mode_is_text(self, monkeypatch, restore_root_logger):
        monkeypatch.delenv("AG_LOG_FORMAT", raising=False)
        setup_logging()
        assert not isinstance(restore_root_logger.handlers[0].formatter, StructuredJsonFormatter)

    def test_log_level_from_env(self, monkeypatch, restore_root_logger):
        monkeypatch.setenv("AG_LOG_LEVEL", "WARNING")
        setup_logging()
        assert restore_root_logger.level == logging.WARNING

    def test_invalid_log_level_falls_back_to_info(self, monkeypatch, restore_root_logger):
        monkeypatch.setenv("AG_LOG_LEVEL", "NOTAVALIDLEVEL")
        setup_logging()
        assert restore_root_logger.level == logging.INFO


def test_startup_log_contains_configuration(caplog):
    with caplog.at_level(logging.INFO, logger="awareguard"):
        log_startup_info()
    rec = caplog.records[-1]
    assert "AwareGuard started" in rec.message
    assert rec.version == "0.1.0"
    assert rec.auth_provider in ("hs256", "public_key")
    assert rec.default_role == "student"


# ---------------------------------------------------------------------------
# Request and audit logging through the app
# ---------------------------------------------------------------------------


class TestRequestLogging:
    async def test_request_id_header(self, client):
        resp = await client.get("/health")
        assert len(resp.headers["X-Request-ID"]) == 8

    async def test_request_log_fields(self, client, caplog):
        with caplog.at_level(logging.INFO, logger="awareguard"):
            await client.get("/health")
        rec = next(r for r in caplog.records if getattr(r, "path", None) == "/health")
        assert rec.method == "GET"
        assert rec.status_code == 200
        assert rec.duration_ms >= 0

    async def test_error_body_carries_request_id(self, client):
        resp = await client.get("/admin/roles")
        assert resp.json()["request_id"] == resp.headers["X-Request-ID"]


class TestAuditLogging:
    async def test_missing_token_logged(self, client, caplog):
        with caplog.at_level(logging.WARNING, logger="awareguard.audit"):
            await client.get("/users/me")
        rec = next(r for r in caplog.records if r.name == "awareguard.audit")
        assert rec.event_category == "audit"
        assert rec.action == "access_unauthenticated"

    async def test_invalid_token_logged_with_kind(self, client, caplog, auth_headers):
        with caplog.at_level(logging.WARNING, logger="awareguard.audit"):
            await client.get("/users/me", headers=auth_headers(expires_in=-60))
        rec = next(r for r in caplog.records if r.name == "awareguard.audit")
        assert rec.action == "access_token_invalid"
        assert rec.reason == "expired"

    async def test_denial_logged(self, client, caplog, auth_headers):
        with caplog.at_level(logging.WARNING, logger="awareguard.audit"):
            await client.get("/admin/roles", headers=auth_headers("user_student"))
        rec = next(r for r in caplog.records if r.name == "awareguard.audit")
        assert rec.action == "access_denied"
        assert rec.actor == "user_student"

    async def test_role_change_logged(self, client, caplog, auth_headers):
        with caplog.at_level(logging.INFO, logger="awareguard.audit"):
            await client.put(
                "/admin/roles/user_employee",
                json={"role": "manager"},
                headers=auth_headers("user_admin"),
            )
        rec = next(r for r in caplog.records if getattr(r, "action", None) == "role_changed")
        assert rec.actor == "user_admin"
        assert rec.target == "user_employee"
