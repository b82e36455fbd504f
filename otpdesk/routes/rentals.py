from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from otpdesk.db.database import get_db
from otpdesk.routes.deps import get_current_account_id
from otpdesk.schemas.rental import RentalCreate, RentalResponse, MessageResponse, PollResponse
from otpdesk.services.provider_gateway import ProviderGateway, get_provider
from otpdesk.services.rental_service import RentalService
from otpdesk.services.settlement_service import SettlementService
from otpdesk.services.ws_manager import NotificationRelay, get_notifier

router = APIRouter()


@router.get('', response_model=list[RentalResponse])
async def list_rentals(
    limit: int = Query(50, ge=1, le=100),
    account_id: str = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationRelay = Depends(get_notifier),
):
    """Own rentals, newest first."""
    svc = RentalService(db, notifier=notifier)
    return await svc.list_rentals(account_id, limit=limit)


@router.post('', response_model=RentalResponse, status_code=status.HTTP_201_CREATED)
async def create_rental(
    data: RentalCreate,
    account_id: str = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
    gateway: ProviderGateway = Depends(get_provider),
    notifier: NotificationRelay = Depends(get_notifier),
):
    """Rent a number. Charges `price` credits once the provider confirms."""
    svc = RentalService(db, gateway, notifier)
    return await svc.create_rental(account_id, data.service, data.price)


@router.get('/{rental_id}', response_model=RentalResponse)
async def get_rental(
    rental_id: str,
    account_id: str = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationRelay = Depends(get_notifier),
):
    svc = RentalService(db, notifier=notifier)
    return await svc.get_rental(account_id, rental_id)


@router.get('/{rental_id}/poll', response_model=PollResponse)
async def poll_rental(
    rental_id: str,
    account_id: str = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
    gateway: ProviderGateway = Depends(get_provider),
    notifier: NotificationRelay = Depends(get_notifier),
):
    """Check for an SMS. Clients call this on an interval until the status is terminal."""
    svc = SettlementService(db, gateway, notifier)
    result = await svc.poll_rental(account_id, rental_id)
    return PollResponse(
        status=result.status,
        rental=RentalResponse.model_validate(result.rental),
        message=MessageResponse.model_validate(result.message) if result.message else None,
    )


@router.get('/{rental_id}/messages', response_model=list[MessageResponse])
async def list_messages(
    rental_id: str,
    account_id: str = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_db),
):
    """Received codes for a rental, newest first, one per code."""
    svc = RentalService(db)
    return await svc.list_messages(account_id, rental_id)
