"""Ledger notifications held on a session until it commits.

Services queue a push for every applied delta; the request scope sends them
once the session has committed, and drops them if it rolls back.
"""
from sqlalchemy.ext.asyncio import AsyncSession

PENDING_KEY = 'pending_notifications'


def queue_ledger_event(db: AsyncSession, notifier, account_id: str, balance: int, entry) -> None:
    """Hold a balance/transaction push until `db` commits."""
    if notifier is None:
        return
    db.info.setdefault(PENDING_KEY, []).append((notifier, account_id, balance, entry))


def discard_pending(db: AsyncSession) -> None:
    db.info.pop(PENDING_KEY, None)


async def send_pending(db: AsyncSession) -> int:
    """Deliver pushes queued on `db`. Only call after a successful commit."""
    events = db.info.pop(PENDING_KEY, [])
    for notifier, account_id, balance, entry in events:
        await notifier.ledger_changed(account_id, balance, entry)
    return len(events)
