"""Tests for operator API authentication."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from contacthub.auth import require_admin_token
from contacthub.dialogue.engine import redact_phone


# ── Fixture: mock settings for auth tests ──────────────────────────

class FakeSettings:
    def __init__(self, admin_api_key="", debug=False):
        self.admin_api_key = admin_api_key
        self.debug = debug


def _bearer(token):
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


# ── Tests: Auth logic ──────────────────────────────────────────────

class TestRequireAdminToken:
    """Test the require_admin_token dependency directly."""

    async def test_rejects_no_token_when_key_set(self, monkeypatch):
        monkeypatch.setattr("contacthub.auth.settings", FakeSettings(admin_api_key="secret"))
        with pytest.raises(HTTPException) as exc_info:
            await require_admin_token(credentials=None)
        assert exc_info.value.status_code == 401
        assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}

    async def test_rejects_wrong_token(self, monkeypatch):
        monkeypatch.setattr("contacthub.auth.settings", FakeSettings(admin_api_key="secret"))
        with pytest.raises(HTTPException) as exc_info:
            await require_admin_token(credentials=_bearer("wrong"))
        assert exc_info.value.status_code == 401

    async def test_allows_correct_token(self, monkeypatch):
        monkeypatch.setattr("contacthub.auth.settings", FakeSettings(admin_api_key="secret"))
        # Should not raise
        await require_admin_token(credentials=_bearer("secret"))

    async def test_allows_no_key_debug_mode(self, monkeypatch):
        monkeypatch.setattr("contacthub.auth.settings", FakeSettings(admin_api_key="", debug=True))
        await require_admin_token(credentials=None)

    async def test_rejects_no_key_production(self, monkeypatch):
        monkeypatch.setattr("contacthub.auth.settings", FakeSettings(admin_api_key="", debug=False))
        with pytest.raises(HTTPException) as exc_info:
            await require_admin_token(credentials=_bearer("anything"))
        assert exc_info.value.status_code == 403


# ── Tests: Session ID entropy ─────────────────────────────────────

class TestSessionIds:
    """Chat session IDs use high-entropy URL-safe tokens."""

    def test_generated_ids_are_url_safe_and_unique(self):
        import string

        from contacthub.dialogue import DialogueSessions

        sessions = DialogueSessions(lambda sid: _StubEngine(sid))
        ids = {sessions.get_or_create().session_id for _ in range(50)}
        assert len(ids) == 50
        valid = set(string.ascii_letters + string.digits + "-_")
        assert all(len(i) == 24 and set(i) <= valid for i in ids)


class _StubEngine:
    def __init__(self, session_id):
        self.session_id = session_id


# ── Tests: phone redaction ────────────────────────────────────────

class TestPhoneRedaction:
    """redact_phone masks caller numbers for logging."""

    def test_redacts_phone(self):
        assert redact_phone("0612345678") == "06******78"

    def test_redacts_short_value(self):
        assert redact_phone("123") == "***"

    def test_redacts_empty(self):
        assert redact_phone("") == "***"
