"""Reacher API configuration: settings dataclass loaded from the environment."""

import os
from collections.abc import Mapping
from dataclasses import dataclass

from reacher_api.errors import ConfigError

JWT_ALGORITHM = "RS256"

_REQUIRED_ENV = {
    "database_url": "DATABASE_URL",
    "auth0_domain": "AUTH0_DOMAIN",
    "auth0_audience": "AUTH0_API_IDENTIFIER",
    "verifier_endpoint": "SERVERLESS_VERIFIER_ENDPOINT",
}

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass(frozen=True, slots=True)
class Settings:
    """Application settings. Build with ``Settings.from_env()`` at startup.

    Rate limit format: "{count}/{period}", e.g. "100/15min" (see ratelimit.parse_rate_limit).
    """

    database_url: str
    auth0_domain: str
    auth0_audience: str
    verifier_endpoint: str
    http_timeout: float = 10.0
    rate_limit: str = "100/15min"
    jwks_requests_per_minute: int = 5
    jwks_max_queue_wait: float = 10.0
    trust_proxy: bool = False

    def __post_init__(self) -> None:
        """Validate values at construction time."""
        from reacher_api.ratelimit import parse_rate_limit

        for field_name in _REQUIRED_ENV:
            if not getattr(self, field_name):
                raise ConfigError(f"{field_name} must not be empty")
        try:
            parse_rate_limit(self.rate_limit)
        except ValueError as e:
            raise ConfigError(str(e))
        if self.http_timeout <= 0:
            raise ConfigError(f"http_timeout must be positive, got {self.http_timeout}")
        if self.jwks_requests_per_minute <= 0:
            raise ConfigError(
                f"jwks_requests_per_minute must be positive, got {self.jwks_requests_per_minute}"
            )

    @property
    def issuer(self) -> str:
        """Expected ``iss`` claim: the identity provider's tenant URL."""
        return f"https://{self.auth0_domain}/"

    @property
    def jwks_url(self) -> str:
        return f"https://{self.auth0_domain}/.well-known/jwks.json"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Load settings from environment variables.

        Raises:
            ConfigError: If any required variable is missing, naming all of them.
        """
        env = os.environ if environ is None else environ

        missing = [name for name in _REQUIRED_ENV.values() if not env.get(name)]
        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}",
                code="missing_env",
            )

        kwargs: dict = {field: env[name] for field, name in _REQUIRED_ENV.items()}
        if env.get("HTTP_TIMEOUT"):
            try:
                kwargs["http_timeout"] = float(env["HTTP_TIMEOUT"])
            except ValueError:
                raise ConfigError(f"Invalid HTTP_TIMEOUT: '{env['HTTP_TIMEOUT']}'")
        if env.get("RATE_LIMIT"):
            kwargs["rate_limit"] = env["RATE_LIMIT"]
        if env.get("TRUST_PROXY"):
            kwargs["trust_proxy"] = env["TRUST_PROXY"].strip().lower() in _TRUTHY
        return cls(**kwargs)
