"""Admin console operations: moderation, balance adjustments, reporting."""
import logging
from dataclasses import dataclass, field
from sqlalchemy import select, desc, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from otpdesk.db.outbox import queue_ledger_event
from otpdesk.errors import BadRequest, Forbidden, NotFound, ServiceError
from otpdesk.models.account import Account, AccountStatus
from otpdesk.models.ledger import Transaction, TransactionKind
from otpdesk.services.ledger_service import LedgerService

logger = logging.getLogger(__name__)


@dataclass
class BulkFailure:
    account_id: str
    kind: str
    reason: str


@dataclass
class BulkResult:
    """Per-target outcome of a bulk adjustment."""
    succeeded: list[str] = field(default_factory=list)
    failed: list[BulkFailure] = field(default_factory=list)
    transactions: list[Transaction] = field(default_factory=list)


class AdminService:
    """Everything behind the admin console. Every call names the acting admin."""

    def __init__(self, db: AsyncSession, notifier=None):
        self.db = db
        self.notifier = notifier
        self.ledger = LedgerService(db)

    async def require_admin(self, actor_id: str) -> Account:
        actor = await self.db.get(Account, actor_id)
        if not actor or not actor.is_admin:
            raise Forbidden('Admin access required')
        return actor

    async def adjust_balance(
        self,
        actor_id: str,
        target_id: str,
        amount: int,
        note: str = '',
        bulk: bool = False,
    ) -> Transaction:
        """Add (positive) or deduct (negative) credits on behalf of an admin."""
        await self.require_admin(actor_id)
        return await self._adjust(actor_id, target_id, amount, note, bulk)

    async def adjust_balance_bulk(
        self,
        actor_id: str,
        target_ids: list[str],
        amount: int,
        note: str = '',
    ) -> BulkResult:
        """Apply the same adjustment to each target independently.

        A failed target is reported and skipped; targets already applied stay
        applied.
        """
        await self.require_admin(actor_id)
        if not target_ids:
            raise BadRequest('No accounts given')
        if amount == 0:
            raise BadRequest('Invalid amount')

        outcome = BulkResult()
        for target_id in target_ids:
            try:
                entry = await self._adjust(actor_id, target_id, amount, note, bulk=True)
            except ServiceError as e:
                logger.warning(f'Bulk adjustment skipped account {target_id}: {e.kind} {e.message}')
                outcome.failed.append(BulkFailure(account_id=target_id, kind=e.kind, reason=e.message))
                continue
            outcome.succeeded.append(target_id)
            outcome.transactions.append(entry)

        logger.info(
            f'Admin {actor_id} bulk adjusted {len(outcome.succeeded)} of {len(target_ids)} accounts by {amount}'
        )
        return outcome

    async def list_accounts(self, actor_id: str, search: str = '', limit: int = 50) -> list[Account]:
        """Newest accounts first, filtered by email or name substring."""
        await self.require_admin(actor_id)
        query = select(Account).order_by(desc(Account.created_at)).limit(limit)
        if search:
            pattern = f'%{search.lower()}%'
            query = query.where(or_(
                func.lower(Account.email).like(pattern),
                func.lower(Account.first_name).like(pattern),
                func.lower(Account.last_name).like(pattern),
            ))
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_account(self, actor_id: str, account_id: str) -> Account:
        await self.require_admin(actor_id)
        account = await self.db.get(Account, account_id)
        if not account:
            raise NotFound('User not found', {'account_id': account_id})
        return account

    async def set_status(self, actor_id: str, account_id: str, status: str) -> Account:
        """Moderate an account: active, suspended or banned."""
        try:
            new_status = AccountStatus(status)
        except ValueError:
            raise BadRequest('Invalid status', {'status': status})

        account = await self.get_account(actor_id, account_id)
        account.status = new_status.value
        await self.db.flush()
        await self.db.refresh(account)
        logger.info(f'Admin {actor_id} set account {account_id} to {new_status.value}')
        return account

    async def list_transactions(
        self, actor_id: str, account_id: str | None = None, limit: int = 50,
    ) -> list[Transaction]:
        await self.require_admin(actor_id)
        return await self.ledger.get_history(account_id=account_id, limit=limit)

    async def stats(self, actor_id: str) -> dict:
        """Dashboard numbers: accounts, active accounts, credits in circulation, 24h volume."""
        await self.require_admin(actor_id)
        total_users = await self.db.scalar(select(func.count()).select_from(Account))
        active_users = await self.db.scalar(
            select(func.count()).select_from(Account).where(Account.status == AccountStatus.ACTIVE.value)
        )
        total_credits = await self.db.scalar(select(func.coalesce(func.sum(Account.balance), 0)))
        return {
            'total_users': total_users or 0,
            'active_users': active_users or 0,
            'total_credits': int(total_credits or 0),
            'recent_transactions': await self.ledger.count_since(hours=24),
        }

    async def _adjust(
        self, actor_id: str, target_id: str, amount: int, note: str, bulk: bool,
    ) -> Transaction:
        if amount == 0:
            raise BadRequest('Invalid amount')

        if bulk:
            description = 'Admin bulk credit addition' if amount > 0 else 'Admin bulk credit deduction'
        else:
            description = 'Admin added credits' if amount > 0 else 'Admin deducted credits'
        metadata = {'admin_id': actor_id, 'admin_note': note or ''}
        if bulk:
            metadata['bulk_operation'] = True

        result = await self.ledger.apply_delta(
            target_id, amount, TransactionKind.ADMIN_ADJUSTMENT, description, metadata=metadata,
        )
        logger.info(f'Admin {actor_id} adjusted account {target_id} by {amount} -> {result.new_balance}')

        queue_ledger_event(self.db, self.notifier, target_id, result.new_balance, result.transaction)
        return result.transaction
