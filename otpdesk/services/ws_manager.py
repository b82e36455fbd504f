"""WebSocket connection manager and best-effort balance notifications."""
import logging
from collections import defaultdict

from fastapi import WebSocket

from otpdesk.models.ledger import Transaction

logger = logging.getLogger(__name__)

# Event names understood by the web client
CREDIT_UPDATE_EVENT = 'credit-update'
TRANSACTION_EVENT = 'transaction'


class ConnectionManager:
    """Manages WebSocket connections per account."""

    def __init__(self):
        # account_id -> list of WebSocket connections (several tabs/devices)
        self.active_connections: dict[str, list[WebSocket]] = defaultdict(list)

    async def connect(self, websocket: WebSocket, account_id: str):
        """Accept and register a new connection."""
        await websocket.accept()
        self.active_connections[account_id].append(websocket)
        logger.info(f'Account {account_id} connected. Total connections: {len(self.active_connections[account_id])}')

    def disconnect(self, websocket: WebSocket, account_id: str):
        """Remove a connection."""
        connections = self.active_connections.get(account_id)
        if connections is None:
            return
        if websocket in connections:
            connections.remove(websocket)
        if not connections:
            del self.active_connections[account_id]
        logger.info(f'Account {account_id} disconnected. Remaining: {len(self.active_connections.get(account_id, []))}')

    async def send_to_account(self, account_id: str, message: dict):
        """Send a message to every connection of one account."""
        connections = self.active_connections.get(account_id)
        if not connections:
            logger.debug(f'Account {account_id} has no active connections')
            return

        dead_connections = []
        for connection in list(connections):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.warning(f'Failed to send to account {account_id}: {e}')
                dead_connections.append(connection)
        for conn in dead_connections:
            self.disconnect(conn, account_id)


def serialize_transaction(entry: Transaction) -> dict:
    return {
        'id': entry.id,
        'kind': entry.kind,
        'amount': entry.amount,
        'balance_before': entry.balance_before,
        'balance_after': entry.balance_after,
        'description': entry.description,
        'rental_id': entry.rental_id,
        'created_at': entry.created_at.isoformat() if entry.created_at else None,
    }


class NotificationRelay:
    """Pushes balance and transaction changes to an account's live clients.

    Never raises: clients must re-read the balance anyway, so a dropped
    push only costs latency.
    """

    def __init__(self, connections: ConnectionManager):
        self.connections = connections

    async def balance_changed(self, account_id: str, balance: int) -> None:
        await self._emit(account_id, {'type': CREDIT_UPDATE_EVENT, 'credits': balance})

    async def transaction_created(self, account_id: str, entry: Transaction) -> None:
        try:
            payload = serialize_transaction(entry)
        except Exception:
            logger.exception(f'Could not serialize transaction for account {account_id}')
            return
        await self._emit(account_id, {'type': TRANSACTION_EVENT, 'transaction': payload})

    async def ledger_changed(self, account_id: str, balance: int, entry: Transaction) -> None:
        """Convenience: both events for one applied delta."""
        await self.balance_changed(account_id, balance)
        await self.transaction_created(account_id, entry)

    async def _emit(self, account_id: str, message: dict) -> None:
        try:
            await self.connections.send_to_account(account_id, message)
        except Exception:
            logger.exception(f'Notification to account {account_id} dropped')


# Singleton instances
manager = ConnectionManager()
relay = NotificationRelay(manager)


def get_notifier() -> NotificationRelay:
    """FastAPI dependency for the notification relay."""
    return relay
