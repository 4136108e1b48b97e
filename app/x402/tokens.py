# app/x402/tokens.py
"""
Short-lived bearer tokens scoped to a single asset.

Tokens are HS256 JWTs carrying {assetId, exp}. Expiry is a data field: the
codec does not reject expired tokens, callers compare `exp` against their
own clock (see `is_authorized`).
"""
import logging
import time
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from jose import JWTError, jwt

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
DEFAULT_ACCESS_TOKEN_TTL_SECONDS = 300


@dataclass(frozen=True)
class AccessClaims:
    asset_id: str
    exp: int


class AccessTokenCodec:
    """Issues and verifies asset access tokens with a process-wide secret."""

    def __init__(self, secret: str, default_ttl: int = DEFAULT_ACCESS_TOKEN_TTL_SECONDS):
        if not secret:
            raise ValueError("Access token secret must not be empty")
        self._secret = secret
        self.default_ttl = default_ttl

    def issue(self, asset_id: str, ttl: Optional[int] = None, now: Optional[float] = None) -> str:
        now = time.time() if now is None else now
        exp = int(now) + (self.default_ttl if ttl is None else ttl)
        return jwt.encode({"assetId": asset_id, "exp": exp}, self._secret, algorithm=ALGORITHM)

    def verify(self, token: str) -> Optional[AccessClaims]:
        """Return the token's claims, or None if the signature or shape is invalid."""
        if not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[ALGORITHM],
                options={"verify_exp": False},
            )
        except JWTError as e:
            logger.debug(f"Rejected access token: {e}")
            return None

        asset_id = payload.get("assetId")
        exp = payload.get("exp")
        if not isinstance(asset_id, str) or not isinstance(exp, int):
            return None
        return AccessClaims(asset_id=asset_id, exp=exp)

    def is_authorized(self, token: str, asset_id: str, now: Optional[float] = None) -> bool:
        """True if the token is genuine, scoped to `asset_id` and not past `exp`."""
        claims = self.verify(token)
        if claims is None or claims.asset_id != asset_id:
            return False
        now = time.time() if now is None else now
        return claims.exp >= int(now)


def extract_bearer_token(request: Request) -> str:
    """Read a token from `Authorization: Bearer ...` or the `access` query param."""
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth[7:].strip()
    return request.query_params.get("access", "")
