"""Decoding of identity-provider bearer tokens."""

from dataclasses import dataclass
from typing import Optional

import jwt


@dataclass(frozen=True, slots=True)
class Principal:
    user_id: str
    email: Optional[str] = None


class IdentityService:
    """Verifies access tokens issued by the managed auth provider.

    The provider is opaque: a token is trusted when its signature and expiry
    check out, and its ``sub`` claim is the user ID.
    """

    def __init__(
        self,
        jwt_secret: str,
        jwt_algorithm: str = "HS256",
        audience: Optional[str] = None,
    ):
        self.jwt_secret = jwt_secret
        self.jwt_algorithm = jwt_algorithm
        self.audience = audience

    def verify_token(self, token: str) -> Optional[Principal]:
        """
        Verify and decode a bearer token.

        Args:
            token: JWT string

        Returns:
            Principal if valid, None otherwise
        """
        try:
            payload = jwt.decode(
                token,
                self.jwt_secret,
                algorithms=[self.jwt_algorithm],
                audience=self.audience,
                options={"verify_aud": self.audience is not None, "require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            return None
        except jwt.InvalidTokenError:
            return None

        user_id = payload.get("sub")
        if not isinstance(user_id, str) or not user_id:
            return None
        email = payload.get("email")
        return Principal(user_id=user_id, email=email if isinstance(email, str) else None)
