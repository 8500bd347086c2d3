from quote_service.config import DEFAULT_UPSTREAM_URL, Settings


def test_defaults_match_service_contract(monkeypatch):
    for name in ("QUOTE_UPSTREAM_URL", "QUOTE_RETRY", "CB_FAILURE_THRESHOLD", "CB_COOLDOWN_S",
                 "QUOTE_FALLBACK", "QUOTE_SERVE_STALE_FALLBACK", "PORT"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.upstream_url == DEFAULT_UPSTREAM_URL
    assert (settings.retry, settings.failure_threshold, settings.cooldown_s) == (3, 2, 2.0)
    assert settings.fallback_value == "1.00"
    assert settings.serve_stale_fallback is False
    assert settings.port == 8080


def test_reads_environment(monkeypatch):
    monkeypatch.setenv("QUOTE_RETRY", "0")
    monkeypatch.setenv("CB_COOLDOWN_S", "0.5")
    monkeypatch.setenv("QUOTE_FALLBACK", "5.00")
    monkeypatch.setenv("QUOTE_SERVE_STALE_FALLBACK", "True")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings.from_env()

    assert settings.retry == 0
    assert settings.cooldown_s == 0.5
    assert settings.fallback_value == "5.00"
    assert settings.serve_stale_fallback is True
    assert settings.log_level == "DEBUG"
