"""Shared route dependencies: authentication and service wiring."""
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from otpdesk.db.database import get_db
from otpdesk.errors import Forbidden, Unauthorized
from otpdesk.models.account import Account
from otpdesk.services.auth_service import verify_token

AUTH_COOKIE = 'auth-token'


def extract_token(request: Request) -> str | None:
    """Bearer header first, then the session cookie."""
    header = request.headers.get('authorization', '')
    if header.startswith('Bearer '):
        return header.split(' ', 1)[1].strip() or None
    return request.cookies.get(AUTH_COOKIE)


async def get_current_account_id(request: Request) -> str:
    token = extract_token(request)
    if not token:
        raise Unauthorized('Unauthorized')
    return verify_token(token)


async def get_admin_id(
    account_id: str = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
) -> str:
    """Authenticated caller whose account carries the admin role."""
    account = await db.get(Account, account_id)
    if not account or not account.is_admin:
        raise Forbidden('Forbidden: Admin access required')
    return account_id
