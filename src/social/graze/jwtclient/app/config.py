"""
Configuration Module for the JWT client

Settings are loaded from `JWT_` prefixed environment variables through Pydantic
settings, with defaults that let a client start with nothing configured: tokens
kept in memory, no login action, metrics disabled.

Values that cannot come from the environment (login and logout callables, an
injected persistence backend or aiohttp session) are passed directly to
`create_client`, where they take precedence over these settings.

Key configuration areas include:
- Field names used to read tokens out of login responses
- Refresh and login endpoints
- Credential persistence (memory or Redis)
- Chain behaviour (timeouts, attempt bound)
- Monitoring and error reporting
"""

from typing import Optional
import logging
from pydantic import Field, RedisDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Startup options for the JWT client.

    Environment variables map onto fields with the `JWT_` prefix, for example
    `JWT_REFRESH_TOKEN_RETRIEVAL_URL` or `JWT_REDIS_DSN`.
    """

    model_config = SettingsConfigDict(env_prefix="JWT_")

    debug: bool = False
    """
    Add the debug middleware to the chain and raise StatsD client verbosity.
    Set with JWT_DEBUG=true.
    """

    log_level: str = "INFO"
    """Root log level used by the command line tool when no logging config file is given."""

    token_field_name: Optional[str] = None
    """
    Name of the access token field in login responses (url login mode).
    Only honoured when refresh_token_field_name is set too; defaults to "token".
    """

    refresh_token_field_name: Optional[str] = None
    """
    Name of the refresh token field in login responses (url login mode).
    Only honoured when token_field_name is set too; defaults to "refresh_token".
    """

    refresh_token_retrieval_url: Optional[str] = None
    """
    Endpoint that exchanges the current token pair for a new one.
    Without it a 401 is never recovered.
    """

    login_url: Optional[str] = None
    """Login endpoint for url login mode. Leave unset to configure login in code."""

    login_username_field: str = "username"
    """Request body field carrying the username in url login mode."""

    login_password_field: str = "password"
    """Request body field carrying the password in url login mode."""

    use_local_storage: bool = True
    """
    Keep tokens in the persistence backend (memory map or Redis) rather than
    in plain attributes of the credential store.
    """

    redis_dsn: Optional[RedisDsn] = None
    """
    Redis connection string for persisting tokens across processes.
    Example: redis://valkey:6379/1
    """

    redis_key_prefix: str = ""
    """Prefix added in front of the token keys stored in Redis."""

    request_timeout: Optional[float] = 30.0
    """Total timeout in seconds for each request made by a client-owned session."""

    attempt_max: int = 3
    """
    Upper bound on attempts per request in the chain. The authentication
    middleware needs two (original and one resubmission).
    """

    metrics_backend: str = "none"
    """Metrics backend: 'telegraf' or 'none'."""

    statsd_host: str = Field(default="telegraf")
    """StatsD/Telegraf host for metrics collection."""

    statsd_port: int = Field(default=8125)
    """StatsD/Telegraf port for metrics collection."""

    statsd_prefix: str = "jwtclient"
    """Prefix for all metrics emitted by the client."""

    sentry_dsn: Optional[str] = None
    """Sentry DSN for error reporting from the command line tool."""

    @field_validator("metrics_backend", mode="before")
    @classmethod
    def normalize_metrics_backend(cls, v) -> str:
        """
        Lower-case the backend name and reject unknown backends early.

        Raises:
            ValueError: If the backend is not 'telegraf' or 'none'
        """
        if not isinstance(v, str):
            raise ValueError("metrics_backend must be a string")
        v = v.strip().lower()
        if v not in ("telegraf", "none"):
            raise ValueError("metrics_backend must be 'telegraf' or 'none'")
        return v

    @field_validator("attempt_max")
    @classmethod
    def validate_attempt_max(cls, v: int) -> int:
        if v < 2:
            raise ValueError("attempt_max must allow at least one resubmission (>= 2)")
        return v


DEFAULT_TOKEN_FIELD_NAME = "token"
"""Field holding the access token in login responses when none is configured."""

DEFAULT_REFRESH_TOKEN_FIELD_NAME = "refresh_token"
"""Field holding the refresh token in login responses when none is configured."""

ACCESS_TOKEN_STORAGE_KEY = "jwt_token"
"""Persistence key for the access token."""

REFRESH_TOKEN_STORAGE_KEY = "jwt_refresh_token"
"""Persistence key for the refresh token."""
