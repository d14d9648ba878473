"""
Client configuration settings.
"""

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientConfig(BaseSettings):
    """Client configuration, read from BOOKSHELF_* environment variables."""

    api_base_url: str = Field(default="http://localhost:5000")
    request_timeout: float = Field(default=10.0)
    delete_confirm_seconds: float = Field(default=3.0)
    state_file: str = Field(default="~/.bookshelf/state.json")
    page_size: int = Field(default=10)

    model_config = SettingsConfigDict(
        env_prefix="BOOKSHELF_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("request_timeout", "delete_confirm_seconds")
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("must be greater than zero")
        return v

    @field_validator("page_size")
    @classmethod
    def validate_page_size(cls, v):
        """The API accepts between 1 and 100 items per page."""
        if v < 1 or v > 100:
            raise ValueError("page_size must be between 1 and 100")
        return v

    def get_state_file_path(self) -> Path:
        return Path(self.state_file).expanduser()


# Global config instance
config = ClientConfig()
