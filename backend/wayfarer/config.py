from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    env: str = "dev"
    database_url: str = "sqlite:///./data/wayfarer.db"

    scheduler_enabled: bool = True
    status_sweep_interval_minutes: int = 30
    status_sweep_timeout_seconds: float = 300.0

    # Empty system key leaves the sweep trigger open (local dev)
    system_api_key: str = ""
    admin_api_key: str = ""

    def model_post_init(self, __context):
        if self.env == "prod" and self.database_url.startswith("sqlite"):
            raise ValueError(
                "Production requires explicit DATABASE_URL (not SQLite)"
            )

    class Config:
        env_file = ".env"


@lru_cache
def get_settings() -> Settings:
    return Settings()
