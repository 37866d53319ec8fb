import sys
from pathlib import Path

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

import config


def test_relative_sqlite_url_is_anchored_at_project_root(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "_PROJECT_ROOT", tmp_path.resolve())

    normalized = config.Settings._normalize_database_url("sqlite:///./data/weather_edge.db")

    expected = (tmp_path / "data" / "weather_edge.db").resolve()
    assert normalized == f"sqlite+aiosqlite:///{expected}"


def test_memory_and_non_sqlite_urls_pass_through():
    assert config.Settings._normalize_database_url("sqlite:///:memory:") == "sqlite+aiosqlite:///:memory:"
    assert (
        config.Settings._normalize_database_url(" 'postgresql+asyncpg://u:p@db/weather' ")
        == "postgresql+asyncpg://u:p@db/weather"
    )


def test_url_fields_are_trimmed():
    settings = config.Settings(CLOB_API_URL=' "https://clob.example.com/" ')
    assert settings.CLOB_API_URL == "https://clob.example.com"


def test_live_trading_is_off_by_default(monkeypatch):
    monkeypatch.delenv("TRADING_DRY_RUN", raising=False)
    monkeypatch.delenv("AUTO_TRADE_ENABLED", raising=False)
    settings = config.Settings(_env_file=None)
    assert settings.TRADING_DRY_RUN is True
    assert settings.AUTO_TRADE_ENABLED is False
