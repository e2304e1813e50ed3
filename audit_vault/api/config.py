"""Configuration for FastAPI application."""

from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import List, Optional, Union
import json

from audit_vault import __version__


class Settings(BaseSettings):
    # API Configuration
    api_prefix: str = "/api"
    api_title: str = "audit-vault API"
    api_version: str = __version__
    allowed_origins: Union[str, List[str]] = ["*"]

    @field_validator('allowed_origins', mode='before')
    @classmethod
    def parse_allowed_origins(cls, v):
        """Parse allowed_origins from string or list."""
        if isinstance(v, str):
            # If it's a JSON array string, parse it
            if v.startswith('['):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    return [v]
            # Single origin string
            return [v]
        return v

    # Job tracking
    redis_url: Optional[str] = None
    redis_password: Optional[str] = None

    # Overrides of the engine config read from the environment
    working_dir: Optional[str] = None
    collection_backend: Optional[str] = None
    backup_dir: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Ignore extra environment variables


settings = Settings()
