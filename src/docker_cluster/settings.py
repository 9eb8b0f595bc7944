from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """
    Engine and timing knobs loaded from Environment Variables or .env file.
    Per-rollout options (name, image, count...) come from the command line instead.
    """

    DOCKER_BASE_URL: str | None = None  # Optional: Connect to remote docker

    POLL_INTERVAL: float = 1.0
    KILL_WAIT: float = 2.0
    HEALTH_CHECK_TIMEOUT: float = 10.0
    DEFAULT_TIMEOUT: int = 120

    model_config = SettingsConfigDict(env_prefix="DOCKER_CLUSTER_", env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> AppSettings:
    """
    Creates a singleton instance of AppSettings.
    Uses lru_cache to ensure the .env file is read only once.
    """
    return AppSettings()


settings = get_settings()
