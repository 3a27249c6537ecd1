from pathlib import Path
from typing import List, Literal

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

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: Literal["auto", "json", "console"] = Field(
        default="auto",
        description="Log renderer; auto picks console at DEBUG and JSON otherwise",
    )
    log_quiet_loggers: List[str] = Field(
        default_factory=lambda: ["uvicorn.access", "redis", "httpx"],
        description="Third-party loggers capped at WARNING",
    )
    request_id_header: str = Field(
        default="x-request-id",
        description="Header used to propagate request ids into logs",
    )

    # Sign-In with Ethereum
    siwe_domain: str = Field(
        default="localhost:3000",
        description="Authority that messages must be bound to",
        validation_alias=AliasChoices("siwe_domain", "expected_frontend_domain"),
    )
    siwe_uri: str = Field(
        default="http://localhost:3000",
        description="Origin placed in server-prepared messages",
    )
    siwe_chain_id: int = Field(default=1, ge=1, description="Chain id signatures must be produced under")
    siwe_statement: str = Field(
        default="Sign in with Ethereum to the app.",
        description="Statement placed in server-prepared messages",
    )

    # Nonce Store
    nonce_ttl_seconds: int = Field(default=600, ge=1, description="Lifetime of an unconsumed nonce")
    nonce_sweep_interval_seconds: int = Field(
        default=60,
        ge=1,
        description="Seconds between background sweeps of expired nonces",
    )
    nonce_store_backend: Literal["memory", "redis"] = Field(
        default="memory",
        description="Nonce store implementation",
    )
    redis_url: str = Field(
        default="",
        description="Redis connection string used when nonce_store_backend is redis",
    )
    redis_key_prefix: str = Field(default="siwe:nonce:", description="Key prefix for Redis nonces")

    # Rate Limiting
    rate_limit_enabled: bool = Field(default=True, description="Throttle the /auth endpoints")
    auth_rate_limit_per_minute: int = Field(
        default=10,
        ge=1,
        description="Requests per minute per client for each /auth endpoint",
    )

    @property
    def uses_redis(self) -> bool:
        return self.nonce_store_backend == "redis"


# Global settings instance
settings = Settings()
