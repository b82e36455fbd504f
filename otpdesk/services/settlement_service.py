"""Settlement: resolving a rental to completed, cancelled or expired.

Polling is driven by the client; nothing here waits on the provider. A poll
either settles the rental, reports "waiting", or returns the stored outcome
of a rental that already settled. Expiry is applied lazily wherever rentals
are read, and optionally by the sweeper worker.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from sqlalchemy import select, desc
from sqlalchemy.ext.asyncio import AsyncSession

from otpdesk.config import settings
from otpdesk.db.outbox import queue_ledger_event
from otpdesk.errors import NotFound, UnknownUpstreamError
from otpdesk.models.rental import Rental, RentalStatus, Message
from otpdesk.services.ledger_service import LedgerService
from otpdesk.services.provider_gateway import (
    ProviderGateway, StatusCode, StatusWaiting, StatusCancelled, StatusNoActivation,
)

logger = logging.getLogger(__name__)

WAITING = 'waiting'


@dataclass
class PollResult:
    """What a poll observed. `status` is a RentalStatus value or 'waiting'."""
    status: str
    rental: Rental
    message: Message | None = None


async def get_owned_rental(db: AsyncSession, account_id: str, provider_rental_id: str) -> Rental:
    """Load a rental by upstream id, only if it belongs to `account_id`."""
    result = await db.execute(
        select(Rental).where(
            Rental.provider_rental_id == provider_rental_id,
            Rental.account_id == account_id,
        )
    )
    rental = result.scalar_one_or_none()
    if not rental:
        raise NotFound('Rental not found', {'rental_id': provider_rental_id})
    return rental


class SettlementService:
    """Polls the provider and applies rental state transitions."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: ProviderGateway | None = None,
        notifier=None,
        refund_on_expiry: bool | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.notifier = notifier
        self.ledger = LedgerService(db)
        self.refund_on_expiry = (
            settings.refund_on_expiry if refund_on_expiry is None else refund_on_expiry
        )

    async def poll_rental(self, account_id: str, provider_rental_id: str) -> PollResult:
        """Check the provider for an SMS and settle the rental if possible."""
        rental = await get_owned_rental(self.db, account_id, provider_rental_id)

        if rental.is_overdue():
            rental = await self.expire_if_overdue(rental)
        if rental.is_terminal:
            return await self._stored_outcome(rental)

        signal = await self.gateway.get_status(provider_rental_id)

        if isinstance(signal, StatusWaiting):
            return PollResult(status=WAITING, rental=rental)
        if isinstance(signal, StatusCode):
            return await self._complete(rental, signal)
        if isinstance(signal, StatusCancelled):
            return await self._cancel(rental)
        if isinstance(signal, StatusNoActivation):
            raise NotFound(
                'Rental not found at provider',
                {'rental_id': provider_rental_id, 'upstream': True},
            )
        raise UnknownUpstreamError(f'Unexpected status for rental {provider_rental_id}', raw=signal.raw)

    async def expire_if_overdue(self, rental: Rental, now: datetime | None = None) -> Rental:
        """Move an overdue active rental to expired, refunding if configured."""
        if not rental.is_overdue(now):
            return rental

        refund = None
        async with self.db.begin_nested():
            locked = await self._lock_rental(rental.id)
            if locked.is_overdue(now):
                locked.transition(RentalStatus.EXPIRED)
                await self.db.flush()
                if self.refund_on_expiry:
                    refund = await self.ledger.refund(
                        locked.account_id,
                        locked.price_charged,
                        f'Refund for expired {locked.service} number',
                        metadata={'reason': 'expired'},
                        rental_id=locked.id,
                    )
                logger.info(f'Rental {locked.provider_rental_id} expired (refunded={refund is not None})')

        if refund:
            queue_ledger_event(self.db, self.notifier, locked.account_id, refund.new_balance, refund.transaction)
        return locked

    async def sweep_expired(self, now: datetime | None = None, limit: int = 500) -> int:
        """Expire every overdue rental. Returns how many were expired."""
        now = now or datetime.utcnow()
        result = await self.db.execute(
            select(Rental)
            .where(Rental.status == RentalStatus.ACTIVE.value, Rental.expires_at < now)
            .order_by(Rental.expires_at)
            .limit(limit)
        )
        expired = 0
        for rental in result.scalars().all():
            settled = await self.expire_if_overdue(rental, now)
            if settled.status == RentalStatus.EXPIRED.value:
                expired += 1
        return expired

    async def latest_message(self, rental: Rental) -> Message | None:
        result = await self.db.execute(
            select(Message)
            .where(Message.rental_id == rental.id)
            .order_by(desc(Message.received_at), desc(Message.id))
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _complete(self, rental: Rental, signal: StatusCode) -> PollResult:
        async with self.db.begin_nested():
            locked = await self._lock_rental(rental.id)
            if locked.is_terminal:
                # A concurrent poll settled it first
                message = None
            else:
                message = Message(
                    rental_id=locked.id,
                    account_id=locked.account_id,
                    code=signal.code,
                    text=signal.text,
                )
                self.db.add(message)
                locked.transition(RentalStatus.COMPLETED)
                await self.db.flush()

        if message is None:
            return await self._stored_outcome(locked)
        await self.db.refresh(message)
        logger.info(f'Rental {locked.provider_rental_id} completed')
        return PollResult(status=RentalStatus.COMPLETED.value, rental=locked, message=message)

    async def _cancel(self, rental: Rental) -> PollResult:
        async with self.db.begin_nested():
            locked = await self._lock_rental(rental.id)
            if not locked.is_terminal:
                locked.transition(RentalStatus.CANCELLED)
                await self.db.flush()
                logger.info(f'Rental {locked.provider_rental_id} cancelled upstream')
        return await self._stored_outcome(locked)

    async def _stored_outcome(self, rental: Rental) -> PollResult:
        message = None
        if rental.status == RentalStatus.COMPLETED.value:
            message = await self.latest_message(rental)
        return PollResult(status=rental.status, rental=rental, message=message)

    async def _lock_rental(self, rental_id: int) -> Rental:
        result = await self.db.execute(
            select(Rental)
            .where(Rental.id == rental_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()
