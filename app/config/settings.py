from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: Optional[str] = None  # Only needed by maintenance jobs that bypass RLS

    # Circles
    circle_total_juz: int = 30
    circle_max_members: int = 30
    circle_code_max_attempts: int = 10
    circle_name_max_length: int = 50
    nickname_max_length: int = 20
    circle_max_lifetime_years: int = 1
    strict_assignment_updates: bool = False  # compare expected prior status on every assignment write

    # App
    app_name: str = "khatma-circles-backend"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    cors_origins: str = "http://localhost:8081,http://localhost:19006,http://127.0.0.1:8081"
    rate_limit: str = "120/minute"  # slowapi format, e.g. "100/minute"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix needed
        extra="ignore"
    )


settings = Settings()
