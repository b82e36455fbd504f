from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from otpdesk.db.database import get_db
from otpdesk.errors import NotFound
from otpdesk.models.account import Account
from otpdesk.routes.deps import get_current_account_id
from otpdesk.schemas.account import BalanceResponse

router = APIRouter()


@router.get('/balance', response_model=BalanceResponse)
async def get_balance(
    account_id: str = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    """Authoritative balance for the caller (push events are only a hint)."""
    account = await db.get(Account, account_id)
    if not account:
        raise NotFound('User not found')

    return BalanceResponse(
        credits=account.balance,
        email=account.email,
        first_name=account.first_name,
        last_name=account.last_name,
    )
