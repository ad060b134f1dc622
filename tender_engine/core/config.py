from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # ─────────── APP ───────────
    app_name: str = "Tender & Proposal Lifecycle Engine"
    environment: str = "dev"
    log_level: str = "INFO"

    # ─────────── API ───────────
    api_prefix: str = "/api/v1"
    request_id_header: str = "X-Request-Id"

    # ─────────── DATABASE ───────────
    database_url: str

    # ─────────── JWT / AUTH ───────────
    # tokens are minted by the identity service; we only verify them
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"

    # ─────────── CONCURRENCY ───────────
    stale_retry_attempts: int = 3

    # ─────────── RATE LIMIT (proposal submission) ───────────
    proposal_rate_capacity: int = 10
    proposal_rate_per_minute: float = 10.0


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
