"""Verification of identity-provider JWTs."""
import logging
from typing import Any, Dict, Optional

from jose import JWTError, jwt

from payoova.config import Settings

logger = logging.getLogger(__name__)


class AuthService:
    """Validates bearer tokens issued by the external identity provider.

    Token issuance lives with the provider; this service only checks the
    signature, expiry and (when configured) audience and issuer.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def verify_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Verify JWT token and return payload, or None when it is not acceptable."""
        options = {"verify_aud": bool(self.settings.auth_audience)}
        try:
            payload = jwt.decode(
                token,
                self.settings.auth_jwt_secret,
                algorithms=[self.settings.auth_jwt_algorithm],
                audience=self.settings.auth_audience,
                issuer=self.settings.auth_issuer,
                options=options,
            )
        except JWTError as e:
            logger.info(f"Rejected bearer token: {e}")
            return None

        if not payload.get("sub"):
            logger.info("Rejected bearer token without subject")
            return None
        return payload
