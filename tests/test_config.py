import pytest
from pydantic import ValidationError

from potion.config import Settings
from potion.utils import parse_timestamp, slugify


def test_defaults_are_valid():
    config = Settings(_env_file=None)
    assert config.DATABASE_URL.startswith("sqlite+aiosqlite")
    assert config.BACKUP_KEEP == 3


@pytest.mark.parametrize(
    "overrides",
    [
        {"DATABASE_URL": "sqlite:///./data/potion.db"},
        {"DATABASE_URL": "not a url"},
        {"BACKUP_KEEP": 0},
        {"LOG_LEVEL": "LOUD"},
        {"DEFAULT_WORKSPACE_ID": "  "},
    ],
)
def test_invalid_settings_are_rejected(overrides):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **overrides)


def test_settings_read_prefixed_environment(monkeypatch):
    monkeypatch.setenv("POTION_DEFAULT_WORKSPACE_NAME", "Home")
    assert Settings(_env_file=None).DEFAULT_WORKSPACE_NAME == "Home"


def test_slugify():
    assert slugify("Hello, World!") == "hello--world-"
    assert slugify("Déjà vu") == "d-j--vu"
    assert slugify(None) == "page"


def test_parse_timestamp():
    assert parse_timestamp("2025-01-01T00:00:00Z") == parse_timestamp("2025-01-01T00:00:00+00:00")
    assert parse_timestamp("2025-01-01").tzinfo is not None
    assert parse_timestamp("yesterday") is None
    assert parse_timestamp(None) is None
