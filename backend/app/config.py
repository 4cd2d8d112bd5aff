from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    env: str = "dev"
    database_url: str = "sqlite:///./data/trip_desk.db"

    scheduler_enabled: bool = True

    default_currency: str = "LKR"
    default_page_size: int = 20
    max_page_size: int = 100

    # Broadcasts are written in batches of this many recipients per commit
    broadcast_batch_size: int = 200

    notification_retention_days: int = 30
    notification_cleanup_interval_hours: int = 6

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
