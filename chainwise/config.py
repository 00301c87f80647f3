"""Application configuration loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All config from environment. Never hardcode secrets."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # CoinGecko
    coingecko_api_base: str = Field(default="https://api.coingecko.com/api/v3")
    coingecko_api_key: str = Field(default="")
    coingecko_timeout_seconds: float = Field(default=10.0)
    # Free tier allows ~30 calls/min, split so proxy traffic cannot starve the poller
    coingecko_poller_requests_per_minute: int = Field(default=12)
    coingecko_proxy_requests_per_minute: int = Field(default=18)
    vs_currency: str = Field(default="usd")

    # Live prices (milliseconds)
    price_update_interval_ms: int = Field(default=30_000)
    price_min_update_interval_ms: int = Field(default=10_000)
    stale_check_interval_ms: int = Field(default=10_000)
    # Sessions not read or refreshed for this long are closed
    realtime_session_idle_timeout_ms: int = Field(default=300_000)

    # Inbound rate limiting
    rate_limit_interval_ms: int = Field(default=60_000)
    api_rate_limit: int = Field(default=100)

    # Realtime sessions held in memory
    max_realtime_sessions: int = Field(default=200)

    # App
    app_env: str = Field(default="development")
    log_level: str = Field(default="INFO")
    allowed_hosts: str = Field(default="https://chainwise.app,http://localhost:3000")


settings = Settings()
