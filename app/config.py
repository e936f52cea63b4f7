"""
Application configuration

Run tunables (parallelism, timeouts, output tail) are not duplicated here:
every run reads ``matrix_runner.settings.Settings`` (``MATRIX_RUNNER_*``).
"""
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings"""

    # API
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8080
    API_TITLE: str = "Matrix Runner API"
    API_VERSION: str = "0.1.0"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
