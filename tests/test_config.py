import pytest

import config


def test_cycle_limits_are_case_insensitive() -> None:
    limits = config._parse_cycle_limits('{"Capital One": 4, "Discover": "6"}')
    assert limits == {"capital one": 4, "discover": 6}


def test_cycle_limits_must_be_an_object() -> None:
    with pytest.raises(ValueError):
        config._parse_cycle_limits("[4]")
    with pytest.raises(ValueError):
        config._parse_cycle_limits("not json")


def test_settings_read_environment(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("CARDCYCLE_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("CARDCYCLE_WEBHOOK_DEDUP_SECS", "2.5")
    monkeypatch.setenv("CARDCYCLE_DEFAULT_HISTORY_MONTHS", "6")
    config.get_settings.cache_clear()
    try:
        settings = config.get_settings()
        assert settings.webhook_dedup_secs == 2.5
        assert settings.default_history_months == 6
        assert settings.database_url == f"sqlite:///{tmp_path.resolve() / 'cardcycle.db'}"
        assert settings.institution_cycle_limits == {"capital one": 4}
    finally:
        config.get_settings.cache_clear()
