from datetime import datetime
from enum import Enum
from sqlalchemy import String, BigInteger, DateTime
from sqlalchemy.ext.hybrid import hybrid_property
from sqlalchemy.orm import Mapped, mapped_column

from otpdesk.db.database import Base


class Role(str, Enum):
    USER = 'user'
    ADMIN = 'admin'


class AccountStatus(str, Enum):
    ACTIVE = 'active'
    SUSPENDED = 'suspended'
    BANNED = 'banned'


class Account(Base):
    """End-user account. The id is the identity provider's subject."""

    __tablename__ = 'accounts'

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), default='', index=True)
    first_name: Mapped[str] = mapped_column(String(100), default='')
    last_name: Mapped[str] = mapped_column(String(100), default='')
    phone: Mapped[str | None] = mapped_column(String(32), default=None)

    # Written only by LedgerService.apply_delta; read through `balance`
    _balance: Mapped[int] = mapped_column('balance', BigInteger, default=0)

    role: Mapped[str] = mapped_column(String(10), default=Role.USER.value)
    status: Mapped[str] = mapped_column(String(10), default=AccountStatus.ACTIVE.value)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    @hybrid_property
    def balance(self) -> int:
        """Current credit balance (read-only)."""
        return self._balance or 0

    @balance.inplace.expression
    @classmethod
    def _balance_expression(cls):
        return cls._balance

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value
