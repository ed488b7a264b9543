"""JWT verification for identity-provider access tokens.

Tokens are HS256-signed by the identity provider with a shared secret. Only
the signature, expiry, audience and (optionally) issuer are checked; the
``sub`` claim becomes the submission owner id.
"""

from typing import Optional

import jwt

from visa_advisor.core.config import settings
from visa_advisor.core.exceptions import ConfigurationError
from visa_advisor.schemas.auth import JWTClaims
from visa_advisor.utils.logging import get_logger

LOGGER = get_logger(__name__)

SUPPORTED_ALGORITHMS = ["HS256"]


class JWTVerifier:
    """Verifier for HS256 bearer tokens."""

    def __init__(self, jwt_secret: str, audience: str = "authenticated", issuer: Optional[str] = None):
        """Initialize JWT verifier.

        Args:
            jwt_secret: Shared secret used to sign tokens
            audience: Expected ``aud`` claim
            issuer: Expected ``iss`` claim, not checked when None
        """
        self.jwt_secret = jwt_secret
        self.audience = audience
        self.issuer = issuer

    async def verify_token(self, token: str) -> JWTClaims:
        """Verify and decode a bearer token.

        Args:
            token: JWT access token from Authorization header

        Returns:
            Decoded and validated JWT claims

        Raises:
            jwt.InvalidTokenError: If token is invalid or expired
            ConfigurationError: If no signing secret is configured
        """
        if not self.jwt_secret:
            raise ConfigurationError("AUTH_JWT_SECRET is not configured")

        try:
            header = jwt.get_unverified_header(token)
            alg = header.get("alg")
            if alg not in SUPPORTED_ALGORITHMS:
                raise jwt.InvalidTokenError(f"Unsupported algorithm: {alg}")

            require = ["sub", "exp"] + (["iss"] if self.issuer else [])
            payload = jwt.decode(
                token,
                self.jwt_secret,
                algorithms=SUPPORTED_ALGORITHMS,
                audience=self.audience,
                issuer=self.issuer,
                options={
                    "verify_exp": True,
                    "verify_iss": self.issuer is not None,
                    "require": require,
                },
            )

            claims = JWTClaims(**payload)
            LOGGER.debug(f"Successfully verified token for user: {claims.sub}")
            return claims

        except jwt.ExpiredSignatureError as e:
            LOGGER.warning(f"Token expired: {e}")
            raise jwt.InvalidTokenError("Token has expired") from e
        except jwt.InvalidIssuerError as e:
            LOGGER.warning(f"Invalid issuer: {e}")
            raise jwt.InvalidTokenError("Invalid token issuer") from e
        except jwt.InvalidSignatureError as e:
            LOGGER.warning(f"Invalid signature: {e}")
            raise jwt.InvalidTokenError("Invalid token signature") from e
        except jwt.InvalidTokenError as e:
            LOGGER.warning(f"Invalid token: {e}")
            raise
        except (TypeError, ValueError) as e:
            # Malformed claims (e.g. non-string sub)
            raise jwt.InvalidTokenError(f"Malformed token claims: {e}") from e


jwt_verifier = JWTVerifier(
    jwt_secret=settings.auth.jwt_secret,
    audience=settings.auth.jwt_audience,
    issuer=settings.auth.jwt_issuer,
)
