"""
API configuration settings.
"""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class APIConfig(BaseSettings):
    """API configuration settings."""

    # API Settings
    api_title: str = "Book Catalog API"
    api_version: str = "1.0.0"
    api_description: str = "REST API for a catalog of books with user accounts and role-based access"

    # Deployment mode: "development" echoes raw errors, "production" classifies them
    node_env: str = Field(default="production", description="development or production")

    # Server Settings
    host: str = "0.0.0.0"
    port: int = 8000

    # Database Settings
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_database: str = "book_catalog"
    books_collection: str = "books"
    users_collection: str = "users"

    # Security Settings
    jwt_secret: str = "your-secret-key-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expires_in_days: int = 90
    jwt_cookie_expires_days: int = 90
    jwt_cookie_name: str = "jwt"
    bcrypt_rounds: int = 12
    password_reset_expires_minutes: int = 10

    # Email Settings
    email_host: str = "localhost"
    email_port: int = 25
    email_user: Optional[str] = None
    email_password: Optional[str] = None
    email_from: str = "Book Catalog <no-reply@bookcatalog.local>"

    # CORS Settings
    cors_origins: list = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list = ["*"]
    cors_allow_headers: list = ["*"]

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    model_config = {
        "env_file": ".env",
        "extra": "ignore"  # Ignore extra fields from .env
    }

    @field_validator('node_env')
    @classmethod
    def validate_node_env(cls, v):
        """Ensure the deployment mode is known."""
        valid_modes = ['development', 'production']
        if v.lower() not in valid_modes:
            raise ValueError(f'node_env must be one of: {valid_modes}')
        return v.lower()

    @field_validator('bcrypt_rounds')
    @classmethod
    def validate_bcrypt_rounds(cls, v):
        """bcrypt accepts work factors between 4 and 31."""
        if v < 4 or v > 31:
            raise ValueError('bcrypt_rounds must be between 4 and 31')
        return v

    @field_validator('jwt_expires_in_days', 'jwt_cookie_expires_days', 'password_reset_expires_minutes')
    @classmethod
    def validate_positive(cls, v):
        """Expiry windows must be positive."""
        if v <= 0:
            raise ValueError('expiry windows must be positive')
        return v

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level must be one of: {valid_levels}')
        return v.upper()

    @field_validator('log_format')
    @classmethod
    def validate_log_format(cls, v):
        """Ensure log format is valid."""
        valid_formats = ['json', 'console']
        if v.lower() not in valid_formats:
            raise ValueError(f'log_format must be one of: {valid_formats}')
        return v.lower()

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.node_env == "production"

    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.node_env == "development"


# Global config instance
config = APIConfig()
