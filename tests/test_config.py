# tests/test_config.py
"""
Tests for environment-driven settings.
"""
from decimal import Decimal
from pathlib import Path

import pytest
from pydantic import ValidationError

from unhash.core.config import Settings


class TestSettings:
    """Test defaults and environment parsing."""

    def test_defaults(self, monkeypatch):
        for name in ("UNHASH_PUBLIC_URI", "UNHASH_PORT", "UNHASH_PAYMENT_PLUGIN", "X402_ENABLED"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings(_env_file=None)

        assert settings.UNHASH_PORT == 3000
        assert settings.UNHASH_PAYMENT_PLUGIN == "x402"
        assert settings.UNHASH_OBJECT_OVERHEAD_BYTES == 1024
        assert settings.X402_ENABLED is False
        assert settings.upload_url == "http://localhost:3000/upload"

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("UNHASH_PUBLIC_URI", "https://unhash.example.com/")
        monkeypatch.setenv("UNHASH_PORT", "8080")
        monkeypatch.setenv("UNHASH_DATA_DIR", "/var/lib/unhash")
        monkeypatch.setenv("UNHASH_USD_PER_GB_MONTH", "0.023")
        monkeypatch.setenv("UNHASH_PAYMENT_CREDENTIALS", '{"secret": "snGu", "account": "g.gateway"}')
        monkeypatch.setenv("UNHASH_ROOT_UPLOAD_ENABLED", "false")

        settings = Settings(_env_file=None)

        assert settings.UNHASH_PORT == 8080
        assert settings.UNHASH_DATA_DIR == Path("/var/lib/unhash")
        assert settings.UNHASH_USD_PER_GB_MONTH == Decimal("0.023")
        assert settings.UNHASH_PAYMENT_CREDENTIALS == {"secret": "snGu", "account": "g.gateway"}
        assert settings.UNHASH_ROOT_UPLOAD_ENABLED is False
        assert settings.upload_url == "https://unhash.example.com/upload"

    def test_immutable(self):
        settings = Settings(_env_file=None)
        with pytest.raises(ValidationError):
            settings.UNHASH_PORT = 1
