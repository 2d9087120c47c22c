"""Error taxonomy: every error carries a message, a machine code and an HTTP status."""


class ReacherError(Exception):
    """Base error with an error code and HTTP status."""

    status_code = 500

    def __init__(self, message: str, code: str, status_code: int | None = None):
        self.message = message
        self.code = code
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def detail(self) -> dict:
        """Response body for this error."""
        return {"error": self.code, "message": self.message}

    def headers(self) -> dict[str, str]:
        """Extra response headers for this error."""
        return {}


class ConfigError(ReacherError):
    """A required configuration value is missing or invalid."""

    def __init__(self, message: str, code: str = "config_error"):
        super().__init__(message, code, status_code=500)


class AuthError(ReacherError):
    """Bearer token could not be validated.

    Codes: missing_header, malformed_token, key_unavailable, bad_signature,
    claim_mismatch, expired.
    """

    MISSING_HEADER = "missing_header"
    MALFORMED_TOKEN = "malformed_token"
    KEY_UNAVAILABLE = "key_unavailable"
    BAD_SIGNATURE = "bad_signature"
    CLAIM_MISMATCH = "claim_mismatch"
    EXPIRED = "expired"

    def __init__(self, message: str, code: str):
        super().__init__(message, code, status_code=401)


class ValidationError(ReacherError):
    """Malformed request body or query."""

    def __init__(self, message: str, code: str = "validation_error"):
        super().__init__(message, code, status_code=422)


class UpstreamError(ReacherError):
    """Database or external verifier unreachable or erroring."""

    def __init__(self, message: str, code: str = "upstream_error", status_code: int = 502):
        super().__init__(message, code, status_code=status_code)


class RateExceeded(ReacherError):
    """Too many requests within the configured window."""

    def __init__(self, message: str = "Too many requests. Please try again later.", *, retry_after: float = 0.0):
        self.retry_after = retry_after
        super().__init__(message, "rate_limit_exceeded", status_code=429)

    def headers(self) -> dict[str, str]:
        return {"Retry-After": str(int(self.retry_after) + 1)}


class KeyFetchError(ReacherError):
    """A signing key could not be obtained from the JWKS endpoint."""

    def __init__(self, reason: str, code: str = "key_fetch_failed"):
        self.reason = reason
        super().__init__(reason, code, status_code=401)


class MissingKeyId(KeyFetchError):
    """Token header carries no kid, so there is nothing to look up."""

    def __init__(self, reason: str = "Token missing kid header"):
        super().__init__(reason, code="missing_kid")


class MiddlewareError(ReacherError):
    """A pipeline stage broke the stage-author contract."""

    def __init__(self, message: str, code: str = "middleware_error"):
        super().__init__(message, code, status_code=500)


class StalledExchangeError(MiddlewareError):
    """A stage returned without calling next or writing a response."""

    def __init__(self, message: str):
        super().__init__(message, code="stalled_exchange")


class ResponseAlreadySentError(RuntimeError):
    """A second response was written to the same exchange."""
