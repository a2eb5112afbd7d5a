from decimal import Decimal
from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    db_endpoint: str = "localhost"
    db_port: int = 5432
    db_username: str = "postgres"
    db_password: str = "postgres"
    db_name: str = "workshop"
    db_pool_size: int = 10
    # Full SQLAlchemy URL; wins over the db_* fields when set
    database_url: str | None = None
    auto_create_schema: bool = False

    environment: str = "development"
    log_level: str = "INFO"
    log_json: bool = False

    jwt_secret: str = "dev-secret-change-me"
    jwt_algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24

    default_tax_rate: Decimal = Decimal("0")
    invoice_due_days: int = 30

    business_start_hour: int = 8
    business_end_hour: int = 18
    slot_buffer_minutes: int = 15
    slot_step_minutes: int = 30

    @property
    def direct_dsn(self) -> str:
        return f"postgresql+asyncpg://{self.db_username}:{self.db_password}@{self.db_endpoint}:{self.db_port}/{self.db_name}"

    @property
    def dsn(self) -> str:
        if self.database_url:
            return self.database_url.replace("postgres://", "postgresql+asyncpg://", 1)
        return self.direct_dsn

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    class Config:
        env_file = ".env"

@lru_cache
def get_settings() -> Settings:
    return Settings()
