from typing import Dict

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    database_url: str = Field("sqlite:///balancer_apr.db", env="DATABASE_URL")
    redis_url: str = Field("redis://localhost:6379/0", env="REDIS_URL")
    schedule_frequency: int = Field(60 * 60 * 24, env="SCHEDULE_FREQUENCY")
    api_title: str = Field("Balancer APR API", env="API_TITLE")
    api_rate_limit: str = Field("60/minute", env="API_RATE_LIMIT")

    rpc_url: str = Field("https://eth.llamarpc.com", env="RPC_URL")
    gauge_controller_address: str = Field(
        "0xC128468b7Ce63eA702C1f104D55A2566b13D3ABD", env="GAUGE_CONTROLLER_ADDRESS"
    )
    relative_weight_batch_size: int = Field(50, env="RELATIVE_WEIGHT_BATCH_SIZE")
    # "network:token_address" -> rate provider address, on top of those reported by pools
    rate_providers: Dict[str, str] = Field(default_factory=dict, env="RATE_PROVIDERS")

    balancer_api_url: str = Field("https://api-v3.balancer.fi/graphql", env="BALANCER_API_URL")
    defillama_url: str = Field("https://coins.llama.fi", env="DEFILLAMA_URL")
    http_timeout: int = Field(30, env="HTTP_TIMEOUT")

    cache_ttl_seconds: int = Field(60 * 60, env="CACHE_TTL_SECONDS")
    cache_max_entries: int = Field(512, env="CACHE_MAX_ENTRIES")

    pool_stats_max_retries: int = Field(3, env="POOL_STATS_MAX_RETRIES")
    pool_stats_retry_delay: float = Field(1.0, env="POOL_STATS_RETRY_DELAY")


settings = Settings()
