from datetime import datetime

from otpdesk.db.outbox import discard_pending, queue_ledger_event, send_pending
from otpdesk.models.ledger import Transaction
from otpdesk.services.ws_manager import ConnectionManager, NotificationRelay


class FakeSocket:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []
        self.accepted = False

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError('socket closed')
        self.sent.append(message)


def make_entry():
    return Transaction(
        id=7, account_id='acct-1', kind='debit', amount=300, balance_before=500,
        balance_after=200, description='Rented number for wa', created_at=datetime(2026, 1, 1),
    )


async def test_relay_pushes_to_every_connection_of_the_account():
    connections = ConnectionManager()
    tab1, tab2, other = FakeSocket(), FakeSocket(), FakeSocket()
    await connections.connect(tab1, 'acct-1')
    await connections.connect(tab2, 'acct-1')
    await connections.connect(other, 'acct-2')

    await NotificationRelay(connections).ledger_changed('acct-1', 200, make_entry())

    assert tab1.sent == tab2.sent
    assert tab1.sent[0] == {'type': 'credit-update', 'credits': 200}
    assert tab1.sent[1]['type'] == 'transaction'
    assert tab1.sent[1]['transaction']['balance_after'] == 200
    assert other.sent == []


async def test_dead_connections_are_dropped():
    connections = ConnectionManager()
    dead = FakeSocket(fail=True)
    await connections.connect(dead, 'acct-1')

    await NotificationRelay(connections).balance_changed('acct-1', 10)

    assert 'acct-1' not in connections.active_connections


async def test_relay_never_raises():
    class BrokenManager(ConnectionManager):
        async def send_to_account(self, account_id, message):
            raise RuntimeError('push channel down')

    relay = NotificationRelay(BrokenManager())

    # Must not raise
    await relay.ledger_changed('acct-1', 200, make_entry())


async def test_no_connections_is_a_no_op():
    await NotificationRelay(ConnectionManager()).balance_changed('nobody', 0)


async def test_pushes_wait_for_commit_and_drop_on_rollback(db_session):
    connections = ConnectionManager()
    tab = FakeSocket()
    await connections.connect(tab, 'acct-1')
    relay = NotificationRelay(connections)

    queue_ledger_event(db_session, relay, 'acct-1', 200, make_entry())
    assert tab.sent == []
    discard_pending(db_session)
    assert await send_pending(db_session) == 0

    queue_ledger_event(db_session, relay, 'acct-1', 200, make_entry())
    queue_ledger_event(db_session, None, 'acct-1', 200, make_entry())
    assert await send_pending(db_session) == 1
    assert [m['type'] for m in tab.sent] == ['credit-update', 'transaction']
