import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from otpdesk.main import app
from otpdesk.db.database import Base, get_db
from otpdesk.db.outbox import discard_pending, send_pending
from otpdesk.models.account import Account, Role
from otpdesk.services.auth_service import mint_token
from otpdesk.services.provider_gateway import get_provider
from otpdesk.services.ws_manager import get_notifier
import otpdesk.models  # noqa: F401


class FakeGateway:
    """Stands in for the provider; returns canned results and records calls."""

    def __init__(self, reserve=None, status=None, balance=None):
        self.reserve_result = reserve
        self.status_result = status
        self.balance_result = balance
        self.calls = []

    async def reserve_number(self, service, max_price):
        self.calls.append(('reserve', service, max_price))
        return self._answer(self.reserve_result)

    async def get_status(self, rental_id):
        self.calls.append(('status', rental_id))
        return self._answer(self.status_result)

    async def get_balance(self):
        self.calls.append(('balance',))
        return self._answer(self.balance_result)

    def _answer(self, result):
        if isinstance(result, Exception):
            raise result
        return result


class RecordingNotifier:
    """Notification relay double that remembers what it was asked to push."""

    def __init__(self):
        self.events = []

    async def ledger_changed(self, account_id, balance, entry):
        self.events.append((account_id, balance, entry.id))


@pytest.fixture
async def engine(tmp_path):
    """Fresh SQLite database per test."""
    engine = create_async_engine(f'sqlite+aiosqlite:///{tmp_path / "test.db"}', echo=False)

    # Let SQLAlchemy drive BEGIN so SAVEPOINTs behave
    @event.listens_for(engine.sync_engine, 'connect')
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, 'begin')
    def do_begin(conn):
        conn.exec_driver_sql('BEGIN')

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Database session for direct service tests."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_account(session_factory):
    """Create and commit an account with an opening balance."""

    async def _make(account_id, balance=0, role=Role.USER.value, **fields):
        async with session_factory() as session:
            account = Account(id=account_id, _balance=balance, role=role, **fields)
            session.add(account)
            await session.commit()
            return account

    return _make


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
async def client(session_factory, gateway, notifier):
    """Async HTTP client wired to the test database and fakes."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                discard_pending(session)
                await session.rollback()
                raise
            await send_pending(session)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_provider] = lambda: gateway
    app.dependency_overrides[get_notifier] = lambda: notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url='http://test') as ac:
        yield ac

    app.dependency_overrides.clear()


def auth_headers(account_id):
    return {'Authorization': f'Bearer {mint_token(account_id)}'}
