"""Reacher API: email verification proxy with JWKS-backed bearer auth."""

__version__ = "0.1.0"

from reacher_api.app import create_app
from reacher_api.config import Settings
from reacher_api.context import ReacherContext
from reacher_api.errors import (
    AuthError,
    ConfigError,
    KeyFetchError,
    MiddlewareError,
    MissingKeyId,
    RateExceeded,
    ReacherError,
    StalledExchangeError,
    UpstreamError,
    ValidationError,
)
from reacher_api.jwks import SigningKey, SigningKeyCache
from reacher_api.middleware import check_jwt, cors, rate_limit
from reacher_api.pipeline import Exchange, Request, chain, compose, run
from reacher_api.verifier import JWTVerifier, TokenClaims

__all__ = [
    "AuthError",
    "ConfigError",
    "Exchange",
    "JWTVerifier",
    "KeyFetchError",
    "MiddlewareError",
    "MissingKeyId",
    "RateExceeded",
    "ReacherContext",
    "ReacherError",
    "Request",
    "Settings",
    "SigningKey",
    "SigningKeyCache",
    "StalledExchangeError",
    "TokenClaims",
    "UpstreamError",
    "ValidationError",
    "chain",
    "check_jwt",
    "compose",
    "cors",
    "create_app",
    "rate_limit",
    "run",
]
