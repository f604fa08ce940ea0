"""Clerk session token verification."""

import logging

import httpx
import jwt
from fastapi import HTTPException, status
from jwt import InvalidTokenError

from app.core.config import settings


logger = logging.getLogger(__name__)


class ClerkAuthenticator:
    """
    Verifies session tokens issued by Clerk.

    Outside production the signature check can be skipped so local tokens
    work without a Clerk instance. In production the token must be signed by
    one of the keys published in the instance's JWKS.

    :ivar jwks_url: Endpoint serving the instance's JSON Web Key Set.
    :ivar verify_signature: Whether signatures are checked.
    """

    def __init__(self, jwks_url: str | None = None, verify_signature: bool | None = None):
        self.jwks_url = jwks_url or f"{str(settings.clerk_api_url).rstrip('/')}/v1/jwks"
        self.secret_key = settings.clerk_secret_key
        self.verify_signature = settings.is_production if verify_signature is None else verify_signature
        self._jwks: dict | None = None

    async def get_jwks(self) -> dict:
        """Fetch the JWKS once and cache it for the process lifetime."""
        if self._jwks is None:
            headers = {"Authorization": f"Bearer {self.secret_key}"} if self.secret_key else {}
            async with httpx.AsyncClient(timeout=10.0) as client:
                response = await client.get(self.jwks_url, headers=headers)
                response.raise_for_status()
                self._jwks = response.json()
        return self._jwks

    async def verify_token(self, token: str) -> dict:
        """
        Decode a Clerk session token.

        :param token: The JWT from the ``Authorization`` header.
        :return: The decoded payload; ``sub`` holds the Clerk user id.
        :raises HTTPException: 401 when the token cannot be verified.
        """
        try:
            if not self.verify_signature:
                return jwt.decode(token, options={"verify_signature": False})

            header = jwt.get_unverified_header(token)
            jwks = await self.get_jwks()
            key_data = next((k for k in jwks.get("keys", []) if k.get("kid") == header.get("kid")), None)
            if key_data is None:
                raise InvalidTokenError("Signing key not found")

            signing_key = jwt.PyJWK(key_data)
            return jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                options={"verify_aud": False},
            )
        except (InvalidTokenError, httpx.HTTPError) as e:
            logger.warning(f"Rejected session token: {str(e)}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=f"Invalid authentication token: {str(e)}",
            ) from e
