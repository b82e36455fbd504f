import logging
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy import select, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from otpdesk.config import settings
from otpdesk.db.outbox import queue_ledger_event
from otpdesk.errors import (
    BadRequest, ConfigurationError, Forbidden, InsufficientBalance, InsufficientBalanceAtCommit,
    NotFound, RateLimited, ServiceError, ServiceUnavailable, UnknownUpstreamError,
)
from otpdesk.models.account import Account, AccountStatus
from otpdesk.models.rental import Rental, RentalStatus, Message
from otpdesk.services.ledger_service import LedgerService, LedgerResult
from otpdesk.services.provider_gateway import (
    ProviderGateway, ReserveFailure, ReserveFailureReason, ReserveSuccess,
)
from otpdesk.services.settlement_service import SettlementService, get_owned_rental

logger = logging.getLogger(__name__)

# Upstream failure token -> (error class, user-facing message)
RESERVE_FAILURES = {
    ReserveFailureReason.NO_NUMBERS: (
        ServiceUnavailable, 'No numbers available for this service at the moment',
    ),
    ReserveFailureReason.NO_MONEY: (
        ServiceUnavailable, 'Service temporarily unavailable. Please try again later.',
    ),
    ReserveFailureReason.MAX_PRICE_EXCEEDED: (
        ServiceUnavailable, 'Service price has increased. Please try again or contact support.',
    ),
    ReserveFailureReason.TOO_MANY_ACTIVE_RENTALS: (
        RateLimited,
        'You have too many active rentals. Please complete or cancel existing rentals first.',
    ),
    ReserveFailureReason.BAD_SERVICE: (BadRequest, 'Invalid service code'),
    ReserveFailureReason.BAD_KEY: (
        ConfigurationError, 'Service configuration error. Please contact support.',
    ),
}


def max_upstream_price(price: int, credits_per_usd: int | None = None) -> Decimal:
    """Convert a site price in credits to the upstream max price in dollars."""
    rate = credits_per_usd or settings.credits_per_usd
    return (Decimal(price) / Decimal(rate)).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


class RentalService:
    """Rents numbers: balance check, upstream reservation, debit + rental row."""

    def __init__(self, db: AsyncSession, gateway: ProviderGateway | None = None, notifier=None):
        self.db = db
        self.gateway = gateway
        self.notifier = notifier
        self.ledger = LedgerService(db)
        self.settlement = SettlementService(db, gateway, notifier)

    async def create_rental(self, account_id: str, service: str, price: int) -> Rental:
        """Rent a number for `service`, charging `price` credits.

        The account is charged only after the provider confirms the
        reservation, and the debit re-checks the balance under the row lock.
        """
        service = (service or '').strip()
        if not service:
            raise BadRequest('Service is required')
        if price <= 0:
            raise BadRequest('Price must be positive')

        account = await self.db.get(Account, account_id)
        if not account:
            raise NotFound('Account not found', {'account_id': account_id})
        if account.status != AccountStatus.ACTIVE.value:
            raise Forbidden(f'Account is {account.status}')

        # Fast reject: don't burn an upstream reservation we can't pay for
        if account.balance < price:
            raise InsufficientBalance(account.balance, price)

        result = await self.gateway.reserve_number(service, max_upstream_price(price))

        if isinstance(result, ReserveFailure):
            error_class, message = RESERVE_FAILURES[result.reason]
            if result.reason == ReserveFailureReason.NO_MONEY:
                logger.warning('Provider account is out of funds')
            raise error_class(message, {'upstream': result.reason.value})
        if not isinstance(result, ReserveSuccess):
            raise UnknownUpstreamError('Failed to rent number. Please try again.', raw=result.raw)

        try:
            rental, charge = await self._commit(account_id, service, price, result)
        except InsufficientBalance as e:
            self._log_reconciliation(account_id, price, result, e)
            raise InsufficientBalanceAtCommit(e.balance, e.required) from e
        except IntegrityError as e:
            # Provider handed out a rental id we already hold
            self._log_reconciliation(account_id, price, result, e)
            raise UnknownUpstreamError(
                'Provider returned a rental id that is already in use', raw=result.rental_id,
            ) from e
        except Exception as e:
            self._log_reconciliation(account_id, price, result, e)
            raise

        logger.info(
            f'Account {account_id} rented {rental.phone_number} for {service} '
            f'(rental {rental.provider_rental_id}, {price} credits)'
        )
        queue_ledger_event(self.db, self.notifier, account_id, charge.new_balance, charge.transaction)
        return rental

    async def list_rentals(self, account_id: str, limit: int = 50) -> list[Rental]:
        """Own rentals, newest first, with lazy expiry applied."""
        result = await self.db.execute(
            select(Rental)
            .where(Rental.account_id == account_id)
            .order_by(desc(Rental.created_at), desc(Rental.id))
            .limit(limit)
        )
        rentals = []
        for rental in result.scalars().all():
            if rental.is_overdue():
                rental = await self.settlement.expire_if_overdue(rental)
            rentals.append(rental)
        return rentals

    async def get_rental(self, account_id: str, provider_rental_id: str) -> Rental:
        rental = await get_owned_rental(self.db, account_id, provider_rental_id)
        return await self.settlement.expire_if_overdue(rental)

    async def list_messages(self, account_id: str, provider_rental_id: str) -> list[Message]:
        """Messages for an owned rental: newest first, one per distinct code."""
        rental = await get_owned_rental(self.db, account_id, provider_rental_id)
        result = await self.db.execute(
            select(Message)
            .where(Message.rental_id == rental.id)
            .order_by(desc(Message.received_at), desc(Message.id))
        )
        seen = set()
        unique = []
        for message in result.scalars().all():
            if message.code in seen:
                continue
            seen.add(message.code)
            unique.append(message)
        return unique

    async def _commit(
        self, account_id: str, service: str, price: int, reservation: ReserveSuccess,
    ) -> tuple[Rental, LedgerResult]:
        """Create the rental row and its debit as one unit."""
        async with self.db.begin_nested():
            now = datetime.utcnow()
            rental = Rental(
                account_id=account_id,
                provider_rental_id=reservation.rental_id,
                phone_number=reservation.phone_number,
                service=service,
                status=RentalStatus.ACTIVE.value,
                price_charged=price,
                provider_price=reservation.price,
                created_at=now,
                expires_at=now + timedelta(minutes=settings.rental_ttl_minutes),
            )
            self.db.add(rental)
            await self.db.flush()

            charge = await self.ledger.debit(
                account_id, price, f'Rented number for {service}', rental_id=rental.id,
            )
            rental.funding_transaction_id = charge.transaction_id
            await self.db.flush()
        return rental, charge

    def _log_reconciliation(
        self, account_id: str, price: int, reservation: ReserveSuccess, error: Exception,
    ) -> None:
        # Upstream holds a reservation we never charged for
        kind = error.kind if isinstance(error, ServiceError) else error.__class__.__name__
        logger.error(
            f'RECONCILE: upstream rental {reservation.rental_id} ({reservation.phone_number}) '
            f'reserved for account {account_id} but local debit of {price} failed: {kind}',
            extra={
                'reconcile': True,
                'provider_rental_id': reservation.rental_id,
                'account_id': account_id,
                'price': price,
            },
        )
