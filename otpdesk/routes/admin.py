"""Admin console endpoints. Every route requires an admin account."""
from datetime import datetime
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from otpdesk.config import settings
from otpdesk.db.database import get_db
from otpdesk.errors import ConfigurationError, UnknownUpstreamError
from otpdesk.routes.deps import get_admin_id
from otpdesk.schemas.account import AccountResponse, AccountStatusUpdate
from otpdesk.schemas.admin import StatsResponse, ProviderBalanceResponse
from otpdesk.schemas.ledger import (
    TransactionResponse, CreditAdjustment, BulkCreditAdjustment, BulkAdjustmentResponse,
    BulkFailureResponse,
)
from otpdesk.services.admin_service import AdminService
from otpdesk.services.provider_gateway import ProviderGateway, BalanceOk, BalanceFailure, get_provider
from otpdesk.services.ws_manager import NotificationRelay, get_notifier

router = APIRouter()


@router.get('/users', response_model=list[AccountResponse])
async def list_users(
    search: str = Query('', max_length=100),
    limit: int = Query(50, ge=1, le=200),
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    """List accounts, newest first, optionally filtered by email or name."""
    svc = AdminService(db)
    return await svc.list_accounts(admin_id, search=search, limit=limit)


@router.get('/users/{user_id}', response_model=AccountResponse)
async def get_user(
    user_id: str,
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    svc = AdminService(db)
    return await svc.get_account(admin_id, user_id)


@router.patch('/users/{user_id}', response_model=AccountResponse)
async def update_user_status(
    user_id: str,
    data: AccountStatusUpdate,
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    """Suspend, ban or reactivate an account."""
    svc = AdminService(db)
    return await svc.set_status(admin_id, user_id, data.status)


@router.post('/users/bulk-credits', response_model=BulkAdjustmentResponse)
async def bulk_adjust_credits(
    data: BulkCreditAdjustment,
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationRelay = Depends(get_notifier),
):
    """Adjust many accounts at once. Partial success is reported per account."""
    svc = AdminService(db, notifier)
    outcome = await svc.adjust_balance_bulk(admin_id, data.user_ids, data.amount, data.note)
    return BulkAdjustmentResponse(
        message=f'Successfully updated {len(outcome.succeeded)} of {len(data.user_ids)} users',
        succeeded=outcome.succeeded,
        failed=[
            BulkFailureResponse(account_id=f.account_id, kind=f.kind, reason=f.reason)
            for f in outcome.failed
        ],
    )


@router.post('/users/{user_id}/credits', response_model=TransactionResponse)
async def adjust_credits(
    user_id: str,
    data: CreditAdjustment,
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationRelay = Depends(get_notifier),
):
    """Add (positive amount) or deduct (negative amount) credits."""
    svc = AdminService(db, notifier)
    return await svc.adjust_balance(admin_id, user_id, data.amount, data.note)


@router.get('/transactions', response_model=list[TransactionResponse])
async def list_transactions(
    user_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    svc = AdminService(db)
    return await svc.list_transactions(admin_id, account_id=user_id, limit=limit)


@router.get('/stats', response_model=StatsResponse)
async def get_stats(
    admin_id: str = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    svc = AdminService(db)
    return await svc.stats(admin_id)


@router.get('/provider-balance', response_model=ProviderBalanceResponse)
async def get_provider_balance(
    admin_id: str = Depends(get_admin_id),
    gateway: ProviderGateway = Depends(get_provider),
):
    """Upstream account balance; `low` once it drops under the configured threshold."""
    result = await gateway.get_balance()
    if isinstance(result, BalanceFailure):
        raise ConfigurationError('Invalid provider API key')
    if not isinstance(result, BalanceOk):
        raise UnknownUpstreamError('Unexpected provider balance response', raw=result.raw)

    balance = float(result.balance)
    return ProviderBalanceResponse(
        balance=balance,
        status='low' if balance < settings.provider_low_balance_threshold else 'ok',
        last_updated=datetime.utcnow(),
    )
