from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application configuration loaded from ``REFLECTO_*`` environment variables
    or a `.env` file. Every value has a development default.
    """

    model_config = SettingsConfigDict(env_prefix="REFLECTO_", env_file=".env", extra="ignore")

    database_path: str = "reflecto.db"
    """Path of the SQLite database file."""

    auth_secret: str = "change-me"
    """Key used to digest session tokens before they are stored."""

    session_ttl_hours: float = 720
    """Lifetime of a login session, in hours."""

    public_page_size_default: int = 20
    """Page size for public notebook listings when the caller gives none."""

    public_page_size_max: int = 100
    """Largest page size a public notebook listing will return."""

    notebook_page_size_default: int = 20
    """Page size for a user's own notebook listing."""

    notebook_page_size_max: int = 40
    """Largest page size for a user's own notebook listing."""

    chat_page_size_default: int = 20
    """Page size for chat session listings."""

    chat_page_size_max: int = 100
    """Largest page size for chat session listings."""

    message_page_size_default: int = 100
    """Page size for chat message listings."""

    cors_origins: List[str] = ["*"]
    """Origins allowed by the CORS middleware."""

    log_level: str = "INFO"
    """Root log level (e.g. `DEBUG`, `INFO`, `WARNING`)."""
