"""Client settings loaded from environment variables and .env file."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_API_URL = "https://api.github.com/"
DEFAULT_USER_AGENT = "github-rest-client/0.1.0"
DEFAULT_API_VERSION = "2022-11-28"


class Settings(BaseSettings):
    """Settings for the GitHub REST client."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    github_token: str | None = None
    github_api_url: str = DEFAULT_API_URL
    github_user_agent: str = DEFAULT_USER_AGENT
    github_api_version: str = DEFAULT_API_VERSION
    github_timeout: float = 30.0

    # Block until quota resets instead of sending requests that will be rejected
    github_self_throttle: bool = False
    # Without self-throttle: raise RateLimitError locally when a bucket is known to be empty
    github_fail_fast_rate_limit: bool = False
    # How often a self-throttled call re-invokes after a rate-limited response
    github_rate_limit_retries: int = 3
    # Upper bound (seconds) of random delay added to throttle waits; 0 disables
    github_throttle_jitter: float = 0.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
