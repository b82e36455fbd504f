from datetime import datetime
from enum import Enum
from sqlalchemy import String, BigInteger, ForeignKey, DateTime, Index, JSON
from sqlalchemy.orm import Mapped, mapped_column

from otpdesk.db.database import Base


class TransactionKind(str, Enum):
    """Ledger entry kinds. Credits and refunds add, debits subtract."""
    CREDIT = 'credit'
    DEBIT = 'debit'
    REFUND = 'refund'
    ADMIN_ADJUSTMENT = 'admin_adjustment'


class Transaction(Base):
    """Immutable ledger entry — one row per balance mutation."""

    __tablename__ = 'transactions'

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[str] = mapped_column(
        ForeignKey('accounts.id', ondelete='CASCADE'), index=True
    )

    kind: Mapped[str] = mapped_column(String(20))
    # Unsigned magnitude; direction follows from kind / balance delta
    amount: Mapped[int] = mapped_column(BigInteger)
    balance_before: Mapped[int] = mapped_column(BigInteger)
    balance_after: Mapped[int] = mapped_column(BigInteger)

    description: Mapped[str] = mapped_column(String(200), default='')
    # `metadata` is reserved on declarative classes
    details: Mapped[dict | None] = mapped_column('metadata', JSON, default=None)

    rental_id: Mapped[int | None] = mapped_column(
        ForeignKey('rentals.id', ondelete='SET NULL'), default=None
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('ix_transactions_account_created', 'account_id', 'created_at'),
    )

    @property
    def signed_amount(self) -> int:
        return self.balance_after - self.balance_before
