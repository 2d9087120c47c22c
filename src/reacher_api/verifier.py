"""Bearer token validation using the identity provider's JWKS signing keys."""

from dataclasses import dataclass

import jwt

from reacher_api.config import JWT_ALGORITHM
from reacher_api.errors import AuthError, KeyFetchError
from reacher_api.jwks import SigningKeyCache

_BEARER_SCHEME = "bearer"


@dataclass(frozen=True, slots=True)
class TokenClaims:
    """Claims of a validated access token."""

    iss: str
    sub: str
    aud: list[str]
    iat: int | None
    exp: int
    azp: str | None
    scope: str


class JWTVerifier:
    """Verifies RS256 access tokens issued by the identity provider.

    Args:
        key_cache: Signing key cache for kid lookup.
        issuer: Expected ``iss`` claim.
        audience: API identifier that must appear in ``aud``.
    """

    def __init__(self, key_cache: SigningKeyCache, *, issuer: str, audience: str) -> None:
        self._key_cache = key_cache
        self._issuer = issuer
        self._audience = audience

    async def validate(self, authorization: str | None) -> TokenClaims:
        """Validate an ``Authorization`` header value.

        Raises:
            AuthError: missing_header if absent or not a Bearer credential
                (scheme matched case-insensitively), otherwise whatever
                ``verify`` raises.
        """
        scheme, _, token = (authorization or "").partition(" ")
        if scheme.lower() != _BEARER_SCHEME or not token.strip():
            raise AuthError("No authorization token was found", AuthError.MISSING_HEADER)
        return await self.verify(token.strip())

    async def verify(self, token: str) -> TokenClaims:
        """Verify a raw JWT and map its payload to TokenClaims.

        The header's alg is checked before any key lookup, so a token declaring
        another algorithm never reaches the JWKS endpoint.

        Raises:
            AuthError: With codes malformed_token, bad_signature, key_unavailable,
                claim_mismatch or expired.
            RateExceeded: If the key cache cannot fetch under its ceiling.
        """
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError:
            raise AuthError("Malformed token", AuthError.MALFORMED_TOKEN)

        if header.get("alg") != JWT_ALGORITHM:
            raise AuthError(
                f"Invalid algorithm: expected {JWT_ALGORITHM}", AuthError.BAD_SIGNATURE,
            )

        try:
            signing_key = await self._key_cache.get_signing_key(header.get("kid"))
        except KeyFetchError as e:
            raise AuthError(f"Signing key unavailable: {e.reason}", AuthError.KEY_UNAVAILABLE)

        try:
            payload = jwt.decode(
                token,
                signing_key.key,
                algorithms=[JWT_ALGORITHM],
                audience=self._audience,
                issuer=self._issuer,
                options={"require": ["exp", "iss", "sub", "aud"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthError("Token has expired", AuthError.EXPIRED)
        except (jwt.InvalidSignatureError, jwt.InvalidAlgorithmError):
            raise AuthError("Invalid signature", AuthError.BAD_SIGNATURE)
        except (
            jwt.InvalidIssuerError,
            jwt.InvalidAudienceError,
            jwt.MissingRequiredClaimError,
            jwt.ImmatureSignatureError,
            jwt.InvalidIssuedAtError,
        ) as e:
            raise AuthError(f"Claim mismatch: {e}", AuthError.CLAIM_MISMATCH)
        except jwt.InvalidTokenError:
            raise AuthError("Malformed token", AuthError.MALFORMED_TOKEN)

        aud = payload["aud"]
        return TokenClaims(
            iss=payload["iss"],
            sub=payload["sub"],
            aud=[aud] if isinstance(aud, str) else list(aud),
            iat=payload.get("iat"),
            exp=payload["exp"],
            azp=payload.get("azp"),
            scope=payload.get("scope", ""),
        )
