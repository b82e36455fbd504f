from dataclasses import dataclass
from datetime import datetime, timedelta
from sqlalchemy import select, desc, func
from sqlalchemy.ext.asyncio import AsyncSession

from otpdesk.errors import BadRequest, InsufficientBalance, NotFound
from otpdesk.models.account import Account
from otpdesk.models.ledger import Transaction, TransactionKind


@dataclass
class LedgerResult:
    """Outcome of one applied delta."""
    new_balance: int
    transaction: Transaction

    @property
    def transaction_id(self) -> int:
        return self.transaction.id


def _check_sign(kind: TransactionKind, signed_amount: int) -> None:
    if signed_amount == 0:
        raise BadRequest('Amount must be non-zero')
    if kind in (TransactionKind.CREDIT, TransactionKind.REFUND) and signed_amount < 0:
        raise BadRequest(f'{kind.value} must add to the balance')
    if kind == TransactionKind.DEBIT and signed_amount > 0:
        raise BadRequest('debit must subtract from the balance')


def account_lock_query(account_id: str):
    """Row-locked read of one account, bypassing any stale identity-map copy.

    Concurrent deltas on the same account serialize on this lock under
    PostgreSQL. SQLite ignores FOR UPDATE and serializes writers on the
    database lock instead.
    """
    return (
        select(Account)
        .where(Account.id == account_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


class LedgerService:
    """Handles all credit balance operations. Every movement goes through here.

    The balance column is never written anywhere else: `apply_delta` reads the
    account row under a row lock, computes the new balance, writes it and
    appends the Transaction inside one savepoint, so either both land or
    neither does.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def apply_delta(
        self,
        account_id: str,
        signed_amount: int,
        kind: TransactionKind,
        description: str,
        metadata: dict | None = None,
        rental_id: int | None = None,
        allow_negative: bool = False,
    ) -> LedgerResult:
        """Apply `signed_amount` to the account balance and record it.

        Raises NotFound if the account is missing and InsufficientBalance if
        the result would drop below zero (unless `allow_negative`).
        """
        _check_sign(kind, signed_amount)

        async with self.db.begin_nested():
            account = await self._lock_account(account_id)
            balance_before = account.balance
            new_balance = balance_before + signed_amount

            if new_balance < 0 and not allow_negative:
                raise InsufficientBalance(balance_before, -signed_amount)

            account._balance = new_balance
            account.updated_at = datetime.utcnow()

            entry = Transaction(
                account_id=account_id,
                kind=kind.value,
                amount=abs(signed_amount),
                balance_before=balance_before,
                balance_after=new_balance,
                description=description,
                details=metadata,
                rental_id=rental_id,
            )
            self.db.add(entry)
            await self.db.flush()

        await self.db.refresh(entry)
        return LedgerResult(new_balance=new_balance, transaction=entry)

    async def credit(self, account_id: str, amount: int, description: str, **kwargs) -> LedgerResult:
        """Add credits (top-up)."""
        return await self.apply_delta(account_id, amount, TransactionKind.CREDIT, description, **kwargs)

    async def debit(self, account_id: str, amount: int, description: str, **kwargs) -> LedgerResult:
        """Take credits. Refuses to go below zero."""
        return await self.apply_delta(account_id, -amount, TransactionKind.DEBIT, description, **kwargs)

    async def refund(self, account_id: str, amount: int, description: str, **kwargs) -> LedgerResult:
        """Give credits back for an unfulfilled rental."""
        return await self.apply_delta(account_id, amount, TransactionKind.REFUND, description, **kwargs)

    async def get_balance(self, account_id: str) -> int:
        """Get current balance for an account."""
        account = await self.db.get(Account, account_id)
        if not account:
            raise NotFound(f'Account {account_id} not found')
        return account.balance

    async def get_history(
        self,
        account_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        """Get ledger entries newest first, optionally for a single account."""
        query = select(Transaction).order_by(desc(Transaction.created_at), desc(Transaction.id))
        if account_id:
            query = query.where(Transaction.account_id == account_id)
        query = query.limit(limit).offset(offset)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def count_since(self, hours: int = 24) -> int:
        """Number of transactions recorded in the last `hours`."""
        cutoff = datetime.utcnow() - timedelta(hours=hours)
        return await self.db.scalar(
            select(func.count()).select_from(Transaction).where(Transaction.created_at > cutoff)
        ) or 0

    async def _lock_account(self, account_id: str) -> Account:
        result = await self.db.execute(account_lock_query(account_id))
        account = result.scalar_one_or_none()
        if not account:
            raise NotFound(f'Account {account_id} not found', {'account_id': account_id})
        return account
