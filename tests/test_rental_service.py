from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from otpdesk.db.outbox import send_pending
from otpdesk.errors import (
    BadRequest, ConfigurationError, Forbidden, InsufficientBalance, InsufficientBalanceAtCommit,
    RateLimited, ServiceUnavailable, UnknownUpstreamError,
)
from otpdesk.models.account import Account, AccountStatus
from otpdesk.models.ledger import Transaction
from otpdesk.models.rental import Rental, RentalStatus
from otpdesk.services.ledger_service import LedgerService
from otpdesk.services.provider_gateway import (
    ReserveFailure, ReserveFailureReason, ReserveSuccess, ReserveUnknown,
)
from otpdesk.services.rental_service import RentalService, max_upstream_price
from tests.conftest import FakeGateway, RecordingNotifier


@pytest.fixture
async def account(db_session):
    account = Account(id='acct-1', email='a@example.com', _balance=500)
    db_session.add(account)
    await db_session.flush()
    return account


async def counts(db):
    rentals = await db.scalar(select(func.count()).select_from(Rental))
    transactions = await db.scalar(select(func.count()).select_from(Transaction))
    return rentals, transactions


async def test_rent_debits_and_creates_active_rental(db_session, account):
    gateway = FakeGateway(reserve=ReserveSuccess('RID1', '+8801234567', 0.25))
    notifier = RecordingNotifier()
    svc = RentalService(db_session, gateway, notifier)

    rental = await svc.create_rental('acct-1', 'wa', 300)

    assert rental.provider_rental_id == 'RID1'
    assert rental.status == RentalStatus.ACTIVE.value
    assert rental.price_charged == 300
    assert rental.provider_price == 0.25
    assert rental.expires_at - rental.created_at == timedelta(minutes=20)
    assert await LedgerService(db_session).get_balance('acct-1') == 200

    entries = (await db_session.execute(select(Transaction))).scalars().all()
    assert len(entries) == 1
    assert entries[0].kind == 'debit'
    assert (entries[0].balance_before, entries[0].balance_after) == (500, 200)
    assert entries[0].rental_id == rental.id
    assert rental.funding_transaction_id == entries[0].id

    assert notifier.events == []
    await db_session.commit()
    await send_pending(db_session)
    assert notifier.events == [('acct-1', 200, entries[0].id)]


async def test_upstream_max_price_uses_conversion_rate(db_session, account):
    gateway = FakeGateway(reserve=ReserveSuccess('RID1', '+1555', None))
    await RentalService(db_session, gateway).create_rental('acct-1', 'wa', 125)

    assert gateway.calls == [('reserve', 'wa', Decimal('1.25'))]
    assert max_upstream_price(333, credits_per_usd=100) == Decimal('3.33')


async def test_insufficient_balance_rejects_before_upstream(db_session, account):
    gateway = FakeGateway(reserve=ReserveSuccess('RID1', '+1555'))

    with pytest.raises(InsufficientBalance) as exc_info:
        await RentalService(db_session, gateway).create_rental('acct-1', 'wa', 700)

    assert exc_info.value.shortfall == 200
    assert gateway.calls == []
    assert await counts(db_session) == (0, 0)


@pytest.mark.parametrize('reason, error', [
    (ReserveFailureReason.NO_NUMBERS, ServiceUnavailable),
    (ReserveFailureReason.NO_MONEY, ServiceUnavailable),
    (ReserveFailureReason.MAX_PRICE_EXCEEDED, ServiceUnavailable),
    (ReserveFailureReason.TOO_MANY_ACTIVE_RENTALS, RateLimited),
    (ReserveFailureReason.BAD_SERVICE, BadRequest),
    (ReserveFailureReason.BAD_KEY, ConfigurationError),
])
async def test_upstream_failures_never_debit(db_session, account, reason, error):
    gateway = FakeGateway(reserve=ReserveFailure(reason))

    with pytest.raises(error):
        await RentalService(db_session, gateway).create_rental('acct-1', 'wa', 300)

    assert await LedgerService(db_session).get_balance('acct-1') == 500
    assert await counts(db_session) == (0, 0)


async def test_unknown_upstream_text_is_preserved(db_session, account):
    gateway = FakeGateway(reserve=ReserveUnknown('WEIRD_REPLY'))

    with pytest.raises(UnknownUpstreamError) as exc_info:
        await RentalService(db_session, gateway).create_rental('acct-1', 'wa', 300)

    assert exc_info.value.raw == 'WEIRD_REPLY'
    assert await counts(db_session) == (0, 0)


async def test_upstream_timeout_never_debits(db_session, account):
    gateway = FakeGateway(reserve=UnknownUpstreamError('Provider getNumber timed out'))

    with pytest.raises(UnknownUpstreamError):
        await RentalService(db_session, gateway).create_rental('acct-1', 'wa', 300)

    assert await LedgerService(db_session).get_balance('acct-1') == 500


async def test_balance_drop_during_reservation_fails_at_commit(db_session, account, caplog):
    ledger = LedgerService(db_session)

    class RacingGateway(FakeGateway):
        async def reserve_number(self, service, max_price):
            # Concurrent admin deduction lands while we wait on the provider
            await ledger.debit('acct-1', 400, 'concurrent')
            return ReserveSuccess('RID1', '+1555')

    with pytest.raises(InsufficientBalanceAtCommit):
        await RentalService(db_session, RacingGateway()).create_rental('acct-1', 'wa', 300)

    assert await ledger.get_balance('acct-1') == 100
    rentals, transactions = await counts(db_session)
    assert rentals == 0
    assert transactions == 1  # only the concurrent debit
    assert any('RECONCILE' in r.getMessage() and 'RID1' in r.getMessage() for r in caplog.records)


async def test_suspended_account_cannot_rent(db_session, account):
    account.status = AccountStatus.SUSPENDED.value
    gateway = FakeGateway(reserve=ReserveSuccess('RID1', '+1555'))

    with pytest.raises(Forbidden):
        await RentalService(db_session, gateway).create_rental('acct-1', 'wa', 100)
    assert gateway.calls == []


async def test_list_rentals_is_scoped_to_owner(db_session, account):
    db_session.add(Account(id='acct-2', _balance=1000))
    await db_session.flush()
    svc_a = RentalService(db_session, FakeGateway(reserve=ReserveSuccess('RID-A', '+1')))
    svc_b = RentalService(db_session, FakeGateway(reserve=ReserveSuccess('RID-B', '+2')))
    await svc_a.create_rental('acct-1', 'wa', 100)
    await svc_b.create_rental('acct-2', 'tg', 100)

    mine = await RentalService(db_session).list_rentals('acct-1')

    assert [r.provider_rental_id for r in mine] == ['RID-A']


async def test_reused_upstream_rental_id_is_unknown_upstream(db_session, account, caplog):
    gateway = FakeGateway(reserve=ReserveSuccess('RID1', '+1555'))
    svc = RentalService(db_session, gateway)
    await svc.create_rental('acct-1', 'wa', 100)

    with pytest.raises(UnknownUpstreamError) as exc_info:
        await svc.create_rental('acct-1', 'tg', 100)

    assert exc_info.value.raw == 'RID1'
    assert await LedgerService(db_session).get_balance('acct-1') == 400
    assert await counts(db_session) == (1, 1)
    assert any('RECONCILE' in r.getMessage() and 'IntegrityError' in r.getMessage() for r in caplog.records)
