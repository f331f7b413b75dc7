import pytest

from ofdb_import.core import config


def setup_function(function):
    config.get_settings.cache_clear()


def teardown_function(function):
    config.get_settings.cache_clear()


def test_get_settings_reads_env(monkeypatch):
    monkeypatch.setattr(config, "load_dotenv", lambda: None)
    monkeypatch.setenv("OFDB_API_URL", "https://api.ofdb.io/v0")
    monkeypatch.setenv("OPENCAGE_API_KEY", "abc123")
    monkeypatch.setenv("OFDB_REQUEST_TIMEOUT", "4.5")
    monkeypatch.setenv("OFDB_MAX_WORKERS", "4")
    monkeypatch.setenv("GEOCODE_RETRIES", "0")
    monkeypatch.setenv("GEOCODE_MIN_CONFIDENCE", "7")
    monkeypatch.setenv("REPORT_CHECKPOINT_EVERY", "50")

    settings = config.get_settings()

    assert settings.api_url == "https://api.ofdb.io/v0"
    assert settings.opencage_api_key == "abc123"
    assert settings.request_timeout == 4.5
    assert settings.max_workers == 4
    assert settings.geocode_retries == 0
    assert settings.geocode_min_confidence == 7
    assert settings.report_checkpoint_every == 50


def test_get_settings_warns_when_missing(monkeypatch, caplog):
    monkeypatch.setattr(config, "load_dotenv", lambda: None)
    for name in (
        "OFDB_API_URL",
        "OPENCAGE_API_KEY",
        "OFDB_REQUEST_TIMEOUT",
        "OFDB_MAX_WORKERS",
        "GEOCODE_RETRIES",
        "GEOCODE_MIN_CONFIDENCE",
        "REPORT_CHECKPOINT_EVERY",
    ):
        monkeypatch.delenv(name, raising=False)

    with caplog.at_level("WARNING"):
        settings = config.get_settings()

    assert "OFDB_API_URL is not set" in " ".join(caplog.messages)
    assert "OPENCAGE_API_KEY is not configured" in " ".join(caplog.messages)
    assert settings.api_url == ""
    assert settings.request_timeout == 10.0
    assert settings.max_workers == 1
    assert settings.geocode_retries == 2
    assert settings.report_checkpoint_every == 0


@pytest.mark.parametrize(
    "name, value",
    [
        ("OFDB_MAX_WORKERS", "many"),
        ("OFDB_MAX_WORKERS", "0"),
        ("GEOCODE_RETRIES", "-1"),
        ("OFDB_REQUEST_TIMEOUT", "soon"),
    ],
)
def test_get_settings_rejects_bad_numbers(monkeypatch, name, value):
    monkeypatch.setattr(config, "load_dotenv", lambda: None)
    monkeypatch.setenv(name, value)

    with pytest.raises(config.ConfigError):
        config.get_settings()
