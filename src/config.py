"""
Application Configuration Module.

Manages application settings and environment variables using Pydantic for validation.
Provides centralized configuration management with type safety and validation.

Features:
- Environment variable loading and validation
- Text decoding defaults for streamed responses
- Transport timeout and default request headers
- Logging configuration
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from logger import LogManager


class Settings(BaseSettings):
    """
    Application configuration settings with validation.

    Manages and validates all application settings including:
    - Application identification
    - Logging settings
    - Response decoding
    - HTTP transport defaults

    Attributes:
        app_name (str): Name of the application
        dev (bool): Debug mode flag, also enables console logging
        log_dir (str): Directory for log files
        log_level (int): Logging level (default: debug)
        encoding (str): Codec used to decode streamed response bytes
        request_timeout (Optional[float]): Transport timeout in seconds, None disables it
        default_headers (dict[str, str]): Headers sent with every streaming request
        max_depth (int): Deepest nesting the best-effort parser opens; deeper
            containers are treated as malformed input
    """

    # Application settings
    app_name: str = Field(default="JsonStreaming", description="Application name")
    dev: bool = Field(default=False, description="Debug mode")
    log_dir: str = Field(default="logs", description="Logging directory")

    # Optional configuration with defaults
    log_level: int = Field(default=10, description="Logging level, default debug")

    # Streaming settings
    encoding: str = Field(
        default="utf-8-sig",
        description="Codec for response bytes, utf-8-sig drops a leading BOM",
    )
    request_timeout: Optional[float] = Field(
        default=None, description="Transport timeout in seconds, None disables it"
    )
    default_headers: dict[str, str] = Field(
        default_factory=lambda: {"Content-Type": "application/json"},
        description="Headers sent with every streaming request",
    )
    max_depth: int = Field(
        default=512,
        gt=0,
        le=800,
        description="Deepest nesting opened by the best-effort parser",
    )

    # Configure env file loading
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra fields in .env file
    )


# Create global settings instance
settings = Settings()

# Initialize logging configuration
logger = LogManager(
    app_name=settings.app_name.lower(),
    log_dir=settings.log_dir,
    development=settings.dev,
    level=settings.log_level,
).logger
