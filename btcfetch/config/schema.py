"""Configuration schema using Pydantic.

Single data model and defaults for a fetch run, persisted to ~/.btcfetch/config.json.
"""

from pydantic import BaseModel, Field, ConfigDict
from pydantic_settings import BaseSettings

MAX_BLOCKS = 800


class RetryConfig(BaseModel):
    """Rate-limit (HTTP 429) retry policy of the transport."""
    max_attempts: int = Field(default=5, ge=1)  # Total sends, first one included
    backoff_seconds: float = Field(default=1.0, ge=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_backoff_seconds: float = Field(default=30.0, ge=0.0)


class RpcConfig(BaseModel):
    """Bitcoin node JSON-RPC endpoint."""
    url: str = "http://127.0.0.1:8332/"
    headers: dict[str, str] = Field(default_factory=dict)  # Extra HTTP headers, e.g. basic auth
    api_key: str = ""  # Sent as x-api-key (GetBlock style) when set
    request_timeout_seconds: float = Field(default=30.0, gt=0.0)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    def build_headers(self) -> dict[str, str]:
        headers = dict(self.headers)
        if self.api_key:
            headers.setdefault("x-api-key", self.api_key)
        return headers


class FetchConfig(BaseModel):
    """Which blocks to fetch and how hard to hit the node."""
    from_height: int = Field(default=700000, ge=0)
    max_blocks: int = Field(default=MAX_BLOCKS, ge=1, le=MAX_BLOCKS)
    max_concurrency: int = Field(default=64, ge=0)  # 0 = unbounded
    max_lookback: int = Field(default=100, ge=1)  # Common-ancestor search depth
    item_retries: int = Field(default=0, ge=0)  # 0 = fail-fast batches, else retry failed items N times


class OutputConfig(BaseModel):
    """Output artifact location."""
    path: str = "btc-blocks.json"


class LogConfig(BaseModel):
    """Logging (loguru) settings."""
    level: str = "INFO"
    file: bool = True  # Rotating file sink under ~/.btcfetch/logs


class Config(BaseSettings):
    """Root configuration for btcfetch."""
    rpc: RpcConfig = Field(default_factory=RpcConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    log: LogConfig = Field(default_factory=LogConfig)

    model_config = ConfigDict(
        env_prefix="BTCFETCH_",
        env_nested_delimiter="__"
    )
