import os
from typing import Optional


class EnvManager:
    """Read typed values from the process environment."""

    TRUE_VALUES = {"1", "true", "yes", "on"}

    @staticmethod
    def get_env_variable(name: str, default: Optional[str] = None) -> Optional[str]:
        """Get an environment variable or its default."""
        return os.getenv(name, default)

    @classmethod
    def get_bool(cls, name: str, default: bool = False) -> bool:
        value = os.getenv(name)
        if value is None:
            return default
        return value.strip().lower() in cls.TRUE_VALUES

    @staticmethod
    def get_int(name: str, default: int) -> int:
        value = os.getenv(name)
        if value is None or not value.strip():
            return default
        try:
            return int(value)
        except ValueError:
            return default
