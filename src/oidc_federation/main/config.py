import logging
import os
import sys
from typing import Optional
from urllib.parse import urlparse

from pydantic import Field, computed_field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from oidc_federation.issuers.issuer import IssuerConfig

LOGIN_PATH = "/auth/oidc/login"
ISSUER_SELECTION_PATH = "/auth/oidc/issuers"


def validate_public_origin(origin: str | None) -> str | None:
    """
    Validate and normalize public origin.

    Rules:
    - Must be HTTPS (http is accepted for localhost)
    - Must have hostname
    - No path, query, or fragment allowed
    - Normalize: lowercase hostname, strip trailing slash

    Args:
        origin: Raw origin string (e.g., "https://Wiki.Example.org/")

    Returns:
        str | None: Normalized origin or None if input was None

    Raises:
        ValueError: Invalid origin format

    Examples:
        >>> validate_public_origin("https://Wiki.Example.org/")
        "https://wiki.example.org"

        >>> validate_public_origin("http://insecure.com")
        ValueError: public_origin must use https://
    """
    if origin is None:
        return None

    origin = origin.strip()
    if not origin:
        raise ValueError("public_origin cannot be an empty string")
    parsed = urlparse(origin)

    is_localhost = parsed.hostname in ("localhost", "127.0.0.1")
    if parsed.scheme != "https" and not (parsed.scheme == "http" and is_localhost):
        raise ValueError(
            f"public_origin must use https:// (or http://localhost for development), got: {origin}"
        )

    if not parsed.hostname:
        raise ValueError(f"public_origin missing hostname: {origin}")

    if parsed.path not in ("", "/"):
        raise ValueError(f"public_origin must not include path: {origin}")

    if parsed.query or parsed.fragment:
        raise ValueError(f"public_origin must not include query or fragment: {origin}")

    host = parsed.hostname.lower()
    scheme = parsed.scheme if is_localhost else "https"

    default_port = 443 if scheme == "https" else 80
    port = f":{parsed.port}" if parsed.port and parsed.port != default_port else ""

    return f"{scheme}://{host}{port}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="allow")

    app_version: str = "DEV"

    # Identity providers, keyed by issuer URL (env: OIDC_ISSUERS as JSON)
    oidc_issuers: dict[str, IssuerConfig] = Field(default_factory=dict)

    # Legacy account migration (email is checked first when both are enabled)
    oidc_migrate_users_by_email: bool = False
    oidc_migrate_users_by_username: bool = False

    # Username fallbacks when the provider sends no preferred username
    oidc_use_real_name_as_username: bool = False
    oidc_use_email_name_as_username: bool = False

    # Send the browser back through the login entry point with a re-prompt on logout
    oidc_force_logout: bool = False

    oidc_clock_leeway_seconds: int = 120
    oidc_http_timeout_seconds: float = 30.0

    # Browser session
    session_cookie_name: str = "oidc_session"
    session_ttl_seconds: int = 60 * 60 * 8

    # Public-facing origin used to build the redirect_uri registered at the providers
    public_origin: Optional[str] = None
    api_prefix: str = "/api/v1"
    post_login_path: str = "/"

    # Infrastructure dependencies
    postgres_user: str = "postgres"
    postgres_host: str = "localhost"
    postgres_password: str = "postgres"
    postgres_port: int = 5432
    postgres_db: str = "oidc_federation"
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: Optional[int] = None
    redis_conn_timeout: int = 5

    # Dev
    testing: bool = False
    dev: bool = False

    @model_validator(mode="after")
    def validate_migration_switches(self):
        if self.oidc_migrate_users_by_email and self.oidc_migrate_users_by_username:
            logging.warning(
                "Both OIDC_MIGRATE_USERS_BY_EMAIL and OIDC_MIGRATE_USERS_BY_USERNAME are enabled. "
                "Migration by email takes precedence; username migration is only "
                "considered when email migration is disabled."
            )
        return self

    @model_validator(mode="after")
    def validate_issuers(self):
        for issuer, config in self.oidc_issuers.items():
            if not config.is_usable:
                logging.warning(
                    "Issuer %s is missing client_id or client_secret and cannot be used "
                    "for login until it is completed.",
                    issuer,
                )
        if self.oidc_issuers and not self.has_username_source:
            logging.warning(
                "Neither OIDC_USE_REAL_NAME_AS_USERNAME nor OIDC_USE_EMAIL_NAME_AS_USERNAME "
                "is enabled. Logins from providers that send no preferred username are "
                "refused."
            )
        return self

    @model_validator(mode="after")
    def validate_public_origin_format(self):
        """Validate and normalize public_origin."""
        if self.public_origin:
            try:
                self.public_origin = validate_public_origin(self.public_origin)
            except ValueError as e:
                logging.error(
                    f"Invalid PUBLIC_ORIGIN configuration: {e}\n"
                    f"Example: PUBLIC_ORIGIN=https://wiki.example.org"
                )
                sys.exit(1)
        return self

    @property
    def has_username_source(self) -> bool:
        """Whether a username can be derived when no preferred username is sent."""
        return (
            self.oidc_use_real_name_as_username or self.oidc_use_email_name_as_username
        )

    @property
    def login_url(self) -> str:
        return f"{self.public_origin or ''}{self.api_prefix}{LOGIN_PATH}"

    @property
    def issuer_selection_url(self) -> str:
        return f"{self.public_origin or ''}{self.api_prefix}{ISSUER_SELECTION_PATH}"

    @computed_field
    @property
    def redirect_uri(self) -> str:
        origin = self.public_origin or "http://localhost:8123"
        return f"{origin}{self.api_prefix}{LOGIN_PATH}"

    @computed_field
    @property
    def database_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.postgres_user}:"
            f"{self.postgres_password}@{self.postgres_host}:"
            f"{self.postgres_port}/{self.postgres_db}"
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get settings singleton, creating it if needed.

    Returns:
        Settings: The application settings instance.
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    """Override settings (primarily for testing).

    Args:
        settings: The Settings instance to use.
    """
    global _settings
    _settings = settings


def reset_settings() -> None:
    """Reset settings to None (for test cleanup)."""
    global _settings
    _settings = None


def get_loglevel():
    loglevel = os.getenv("LOGLEVEL", "INFO")

    match loglevel:
        case "INFO":
            return logging.INFO
        case "WARNING":
            return logging.WARNING
        case "ERROR":
            return logging.ERROR
        case "CRITICAL":
            return logging.CRITICAL
        case "DEBUG":
            return logging.DEBUG
        case _:
            return logging.INFO
