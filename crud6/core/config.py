from datetime import datetime
from typing import Dict
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings

from crud6.core.env_manager import EnvManager


class Settings(BaseSettings):
    ASYNC_DATABASE_URL: str = EnvManager.get_env_variable(
        "ASYNC_DATABASE_URL", "sqlite+aiosqlite:///database.db"
    )
    # Extra named data sources, e.g. {"reporting_db": "sqlite+aiosqlite:///reporting.db"}
    DATABASE_CONNECTIONS: Dict[str, str] = {}

    PROJECT_NAME: str = EnvManager.get_env_variable("PROJECT_NAME", "CRUD6 Admin API")
    PROJECT_INFO: str = EnvManager.get_env_variable(
        "PROJECT_INFO", "Schema-driven CRUD admin API"
    )
    PROJECT_VERSION: str = EnvManager.get_env_variable("PROJECT_VERSION", "1.0.0")
    TIME_ZONE: str = EnvManager.get_env_variable("TIME_ZONE", "UTC")

    API_PREFIX: str = EnvManager.get_env_variable("API_PREFIX", "/api")
    SCHEMA_PATH: str = EnvManager.get_env_variable("SCHEMA_PATH", "schema")
    SCHEMA_NAMESPACE: str = EnvManager.get_env_variable("SCHEMA_NAMESPACE", "crud6")
    SCHEMA_CACHE_ENABLED: bool = EnvManager.get_bool("SCHEMA_CACHE_ENABLED", False)
    SCHEMA_CACHE_TTL: int = EnvManager.get_int("SCHEMA_CACHE_TTL", 3600)

    DEBUG_MODE: bool = EnvManager.get_bool("DEBUG_MODE", False)
    LOG_LEVEL: str = EnvManager.get_env_variable("LOG_LEVEL", "INFO")
    # bcrypt cost factor (4..31)
    PASSWORD_ROUNDS: int = EnvManager.get_int("PASSWORD_ROUNDS", 12)

    def get_now(self) -> datetime:
        """Get the current time in the configured time zone."""
        tz = ZoneInfo(self.TIME_ZONE)
        return datetime.now(tz)


settings = Settings()
