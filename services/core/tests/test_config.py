"""Tests for Settings defaults and derived values."""

from lpwatch.config import Settings


def test_defaults():
    settings = Settings()

    assert settings.probe_interval_ms == 5000
    assert settings.max_reconnect_attempts == 5
    assert settings.reconnect_base_delay_ms == 1000
    assert settings.reconnect_max_delay_ms == 30000
    assert settings.upstream_timeout_seconds == 15.0
    assert settings.price_cache_expiry_ms == 30000
    assert settings.rate_limit_max_calls == 100
    assert settings.rate_limit_window_ms == 60000
    assert settings.get_price_sources() == ["pyth", "jupiter"]


def test_ws_url_derived_from_http_url():
    assert Settings(rpc_http_url="https://rpc.example.com", rpc_ws_url="").get_ws_url() == "wss://rpc.example.com"
    assert Settings(rpc_http_url="http://localhost:8899", rpc_ws_url="").get_ws_url() == "ws://localhost:8899"
    assert Settings(rpc_ws_url=" wss://ws.example.com ").get_ws_url() == "wss://ws.example.com"


def test_list_fields_are_parsed():
    settings = Settings(position_addresses=" a, ,b ", price_sources="Jupiter")
    assert settings.get_position_addresses() == ["a", "b"]
    assert settings.get_price_sources() == ["jupiter"]


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("MAX_RECONNECT_ATTEMPTS", "3")
    monkeypatch.setenv("UPSTREAM_TIMEOUT_MS", "2500")

    settings = Settings()

    assert settings.max_reconnect_attempts == 3
    assert settings.upstream_timeout_seconds == 2.5
