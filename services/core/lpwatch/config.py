from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict


# Get the directory where this config.py file is located
_config_dir = Path(__file__).parent
_env_file = _config_dir.parent / ".env"  # services/core/.env


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_env_file),
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8080

    # Ledger RPC
    rpc_http_url: str = "https://api.mainnet-beta.solana.com"
    rpc_ws_url: str = ""  # empty -> derived from rpc_http_url
    commitment: str = "confirmed"  # processed | confirmed | finalized

    # Connection monitoring / reconnection
    probe_interval_ms: int = 5000
    max_reconnect_attempts: int = 5
    reconnect_base_delay_ms: int = 1000
    reconnect_max_delay_ms: int = 30000  # cap on a single backoff wait
    upstream_timeout_ms: int = 15000

    # Price feed
    price_sources: str = "pyth,jupiter"  # priority order, comma-separated
    pyth_hermes_url: str = "https://hermes.pyth.network"
    jupiter_price_url: str = "https://lite-api.jup.ag/price/v2"
    price_cache_expiry_ms: int = 30000
    balance_price_expiry_ms: int = 300000  # balance enrichment tolerates older prices
    price_poll_interval_ms: int = 30000
    rate_limit_max_calls: int = 100
    rate_limit_window_ms: int = 60000

    # Session
    wallet_address: str | None = None
    position_addresses: str = ""  # comma-separated position accounts
    update_buffer_size: int = 100

    def get_ws_url(self) -> str:
        """Return the pubsub URL, deriving it from the HTTP endpoint when unset."""
        if self.rpc_ws_url.strip():
            return self.rpc_ws_url.strip()
        url = self.rpc_http_url.strip()
        if url.startswith("https://"):
            return "wss://" + url[len("https://"):]
        if url.startswith("http://"):
            return "ws://" + url[len("http://"):]
        return url

    def get_price_sources(self) -> list[str]:
        """Return price source names in priority order."""
        return [s.strip().lower() for s in self.price_sources.split(",") if s.strip()]

    def get_position_addresses(self) -> list[str]:
        """Parse configured position accounts."""
        return [a.strip() for a in self.position_addresses.split(",") if a.strip()]

    @property
    def upstream_timeout_seconds(self) -> float:
        return self.upstream_timeout_ms / 1000.0


def get_settings() -> Settings:
    return Settings()
