"""Tests for configuration validation."""

from unittest.mock import patch

import pytest

from config import Config


def test_validate_accepts_defaults_with_database_url():
    with patch.object(Config, "DATABASE_URL", "postgresql://localhost/app"):
        Config.validate()


def test_validate_requires_database_url():
    with patch.object(Config, "DATABASE_URL", ""):
        with pytest.raises(SystemExit):
            Config.validate()


@pytest.mark.parametrize(
    "attr,value",
    [
        ("SCHEMA_CACHE_TTL", -1.0),
        ("SCHEMA_CACHE_SWEEP_INTERVAL", -5.0),
        ("CONNECTION_ID", "prod:eu"),
        ("LOG_LEVEL", "LOUD"),
    ],
)
def test_validate_rejects_bad_values(attr, value):
    with patch.object(Config, "DATABASE_URL", "postgresql://localhost/app"):
        with patch.object(Config, attr, value):
            with pytest.raises(SystemExit):
                Config.validate()


def test_zero_ttl_is_allowed():
    with patch.object(Config, "DATABASE_URL", "postgresql://localhost/app"):
        with patch.object(Config, "SCHEMA_CACHE_TTL", 0.0):
            Config.validate()
