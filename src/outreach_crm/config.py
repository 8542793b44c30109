"""Application settings using Pydantic Settings"""
from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./outreach_crm.db"

    APP_ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    IMPORT_BATCH_SIZE: int = 50
    IMPORT_MAX_UPLOAD_MB: int = 10
    IMPORT_SESSION_TTL_MINUTES: int = 60
    IMPORT_PREVIEW_ROWS: int = 20

    @field_validator("APP_ENV")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        allowed = ["dev", "staging", "prod"]
        if v not in allowed:
            raise ValueError(f"APP_ENV must be one of: {allowed}")
        return v

    @field_validator("IMPORT_BATCH_SIZE")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        if v < 1:
            raise ValueError("IMPORT_BATCH_SIZE must be positive")
        return v

    @property
    def is_production(self) -> bool:
        return self.APP_ENV == "prod"

    @property
    def max_upload_bytes(self) -> int:
        return self.IMPORT_MAX_UPLOAD_MB * 1024 * 1024

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()


def get_settings() -> Settings:
    return settings
