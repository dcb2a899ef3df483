from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    log_level: str = Field(default="INFO", description="Logging level")

    # Bridging / status API
    bridge_api_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL of the bridging and transaction status API",
        validation_alias=AliasChoices("BRIDGE_API_BASE_URL", "MANGO_API_URL", "API_BASE_URL"),
    )
    request_timeout_seconds: int = Field(default=30, description="HTTP request timeout")

    # Default chain timeout profile
    transaction_timeout_ms: int = Field(
        default=300_000,
        description="Wall-clock limit for a tracked transaction to reach a terminal state",
    )
    rpc_timeout_ms: int = Field(default=10_000, description="Timeout for a single RPC call")
    retry_attempts: int = Field(default=3, description="Retries after the first attempt")
    retry_base_delay_ms: int = Field(default=1_000, description="Initial backoff delay")
    retry_max_delay_ms: int = Field(default=30_000, description="Upper bound for backoff delay")

    # Polling
    min_poll_interval_ms: int = Field(
        default=2_000,
        description="Lower bound for transaction status polling interval",
    )
    swap_poll_interval_ms: int = Field(default=5_000, description="Cross-chain order poll interval")

    # Telemetry
    telemetry_buffer_size: int = Field(
        default=50,
        description="Number of classified errors retained by the in-memory telemetry sink",
    )


# Global settings instance
settings = Settings()
