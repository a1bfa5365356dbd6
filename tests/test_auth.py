"""Tests for admin API authentication and startup configuration checks."""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from phonepay.auth import require_admin_token
from phonepay.config import Settings


# ── Fixture: mock settings for auth tests ──────────────────────────

class FakeSettings:
    def __init__(self, admin_api_key="", debug=False):
        self.admin_api_key = admin_api_key
        self.debug = debug


# ── Tests: Auth logic ──────────────────────────────────────────────

class TestRequireAdminToken:
    """Test the require_admin_token dependency directly."""

    @pytest.mark.asyncio
    async def test_rejects_no_token_when_key_set(self, monkeypatch):
        monkeypatch.setattr("phonepay.auth.settings", FakeSettings(admin_api_key="secret"))
        with pytest.raises(HTTPException) as exc_info:
            await require_admin_token(credentials=None)
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_rejects_wrong_token(self, monkeypatch):
        monkeypatch.setattr("phonepay.auth.settings", FakeSettings(admin_api_key="secret"))
        creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials="wrong")
        with pytest.raises(HTTPException) as exc_info:
            await require_admin_token(credentials=creds)
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_allows_correct_token(self, monkeypatch):
        monkeypatch.setattr("phonepay.auth.settings", FakeSettings(admin_api_key="secret"))
        creds = HTTPAuthorizationCredentials(scheme="Bearer", credentials="secret")
        await require_admin_token(credentials=creds)

    @pytest.mark.asyncio
    async def test_allows_no_key_debug_mode(self, monkeypatch):
        monkeypatch.setattr("phonepay.auth.settings", FakeSettings(admin_api_key="", debug=True))
        await require_admin_token(credentials=None)

    @pytest.mark.asyncio
    async def test_rejects_no_key_production(self, monkeypatch):
        monkeypatch.setattr("phonepay.auth.settings", FakeSettings(admin_api_key="", debug=False))
        with pytest.raises(HTTPException) as exc_info:
            await require_admin_token(credentials=None)
        assert exc_info.value.status_code == 403


# ── Tests: Startup validation ──────────────────────────────────────

def _settings(**kwargs) -> Settings:
    values = dict(
        gateway_api_key="xkey_live",
        store_forward_number="+15550001111",
        admin_api_key="secret",
    )
    values.update(kwargs)
    return Settings(_env_file=None, **values)


class TestValidateStartup:
    def test_clean_config(self):
        assert _settings().validate_startup() == []

    def test_negative_retries(self):
        with pytest.raises(ValueError):
            _settings(max_payment_retries=-1).validate_startup()

    def test_relative_base_url(self):
        with pytest.raises(ValueError):
            _settings(public_base_url="pay.example.com").validate_startup()

    def test_missing_gateway_key_warns(self):
        warnings = _settings(gateway_api_key="").validate_startup()
        assert any("GATEWAY_API_KEY" in w for w in warnings)

    def test_missing_forward_number_warns(self):
        warnings = _settings(store_forward_number="").validate_startup()
        assert any("STORE_FORWARD_NUMBER" in w for w in warnings)

    def test_missing_admin_key_warns(self):
        warnings = _settings(admin_api_key="", debug=True).validate_startup()
        assert any("DEBUG=true" in w for w in warnings)
