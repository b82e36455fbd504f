"""Bearer-token verification against the identity provider's shared secret."""
import time

import jwt

from otpdesk.config import settings
from otpdesk.errors import Unauthorized

ALGO = 'HS256'


def mint_token(account_id: str, claims: dict | None = None, ttl_seconds: int | None = None) -> str:
    """Issue a token for `account_id` (seed script and tests)."""
    now = int(time.time())
    payload = {
        'iss': settings.jwt_issuer,
        'sub': account_id,
        'iat': now,
        'exp': now + (ttl_seconds or settings.jwt_ttl_seconds),
        **(claims or {}),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGO)


def verify_token(token: str) -> str:
    """Return the account id carried by a valid token."""
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[ALGO],
            issuer=settings.jwt_issuer,
            options={'require': ['exp', 'iat', 'iss', 'sub']},
        )
    except jwt.PyJWTError as e:
        raise Unauthorized(f'Invalid token: {e}')
    return claims['sub']
