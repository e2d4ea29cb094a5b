from datetime import timedelta

import pytest

from app.rukem import create_app
from app.rukem.config import load_config, load_settings


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in (
        "SECRET_KEY",
        "ENV",
        "DATABASE_URL",
        "ASSOCIATION_NAME",
        "DEFAULT_BENEFIT_AMOUNT",
        "LEDGER_SUMMARY_MONTHS",
        "SESSION_HOURS",
        "MAX_UPLOAD_MB",
        "STATS_CACHE_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    cfg = load_config()
    assert cfg["DATABASE_URL"] == "sqlite:///rukem.db"
    assert cfg["ASSOCIATION_NAME"] == "RUKEM"
    assert cfg["DEFAULT_BENEFIT_AMOUNT"] == 5_000_000
    assert cfg["LEDGER_SUMMARY_MONTHS"] == 6
    assert cfg["PERMANENT_SESSION_LIFETIME"] == timedelta(hours=8)
    assert cfg["MAX_CONTENT_LENGTH"] == 5 * 1024 * 1024
    assert cfg["STATS_CACHE_SECONDS"] == 30
    assert cfg["SESSION_COOKIE_SECURE"] is False


def test_bad_numbers_fall_back(monkeypatch):
    monkeypatch.setenv("DEFAULT_BENEFIT_AMOUNT", "lima juta")
    monkeypatch.setenv("LEDGER_SUMMARY_MONTHS", "0")
    monkeypatch.setenv("MAX_UPLOAD_MB", "12")
    s = load_settings()
    assert s.default_benefit_amount == 5_000_000
    assert s.ledger_summary_months == 6
    assert s.max_upload_mb == 12


def test_production_flags(monkeypatch):
    monkeypatch.setenv("ENV", "Production")
    assert load_settings().is_production
    assert load_config()["SESSION_COOKIE_SECURE"] is True


@pytest.mark.parametrize(
    "env",
    [
        {"DATABASE_URL": "sqlite:///prod.db", "SECRET_KEY": "s3cret"},
        {"DATABASE_URL": "postgresql://rukem@db/rukem"},
    ],
)
def test_production_guardrails(monkeypatch, env):
    monkeypatch.setenv("ENV", "production")
    for k, v in env.items():
        monkeypatch.setenv(k, v)
    with pytest.raises(RuntimeError):
        create_app()
