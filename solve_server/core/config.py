from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Server
    host: str = "127.0.0.1"
    port: int = 3000

    # Repodata cache
    concurrent_repodata_downloads: int = Field(default=1, ge=1)
    repodata_cache_ttl_seconds: float = 30 * 60
    cache_gc_interval_seconds: float = 60.0  # 0 disables the periodic GC
    channel_alias: str = "https://conda.anaconda.org/"

    # HTTP fetcher
    http_timeout: float = 60.0
    http_max_retries: int = 3
    http_verify_ssl: bool = True  # set False behind corporate SSL-inspection proxies
    repodata_probe_compressed: bool = True

    # Solver
    solver_max_rounds: int = 20000

    # Logging
    log_level: str = "INFO"


settings = Settings()
