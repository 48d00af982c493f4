"""
Authentication service: verification of identity-provider JWTs.

Users authenticate with an external identity provider; this service only
checks the bearer token's signature and expiry and exposes its claims. The
``sub`` claim is the user id.
"""

import os
import logging
from datetime import timedelta
from typing import Dict, Optional

import jwt
from dotenv import load_dotenv

from leaguedesk.utils.datetime_utils import utcnow

load_dotenv()

logger = logging.getLogger(__name__)

JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-prod")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE") or None
ACCESS_TOKEN_EXPIRATION_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRATION_MINUTES", "60"))


def create_access_token(data: Dict, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a signed access token (local development and tests).

    Args:
        data: Claims to include; must contain "sub"
        expires_delta: Token lifetime (defaults to ACCESS_TOKEN_EXPIRATION_MINUTES)

    Returns:
        Encoded JWT
    """
    now = utcnow()
    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRATION_MINUTES))
    payload = dict(data)
    payload.update({"iat": int(now.timestamp()), "exp": int(expire.timestamp())})
    if JWT_AUDIENCE and "aud" not in payload:
        payload["aud"] = JWT_AUDIENCE
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(token: str) -> Optional[Dict]:
    """
    Verify a JWT and return its claims.

    Args:
        token: Encoded JWT

    Returns:
        Claims dict, or None if the token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            audience=JWT_AUDIENCE,
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        logger.debug("Rejected expired token")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug(f"Rejected invalid token: {e}")
        return None
