from datetime import datetime
from enum import Enum
from sqlalchemy import String, Integer, BigInteger, Float, ForeignKey, DateTime, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from otpdesk.db.database import Base
from otpdesk.errors import IllegalTransition


class RentalStatus(str, Enum):
    """Lifecycle of a leased number."""
    ACTIVE = 'active'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    EXPIRED = 'expired'


# Only an active rental can move, and only once
ALLOWED_TRANSITIONS = {
    RentalStatus.ACTIVE: {RentalStatus.COMPLETED, RentalStatus.CANCELLED, RentalStatus.EXPIRED},
    RentalStatus.COMPLETED: set(),
    RentalStatus.CANCELLED: set(),
    RentalStatus.EXPIRED: set(),
}


class Rental(Base):
    """A phone number leased from the upstream provider for one verification."""

    __tablename__ = 'rentals'

    id: Mapped[int] = mapped_column(primary_key=True)
    account_id: Mapped[str] = mapped_column(
        ForeignKey('accounts.id', ondelete='CASCADE'), index=True
    )

    # Upstream identifiers
    provider_rental_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    phone_number: Mapped[str] = mapped_column(String(32))
    service: Mapped[str] = mapped_column(String(50))

    status: Mapped[str] = mapped_column(String(12), default=RentalStatus.ACTIVE.value)

    # What the account paid (credits) vs what we paid upstream (USD)
    price_charged: Mapped[int] = mapped_column(BigInteger)
    provider_price: Mapped[float | None] = mapped_column(Float, default=None)

    # Audit back-reference to the debit that funded this rental
    funding_transaction_id: Mapped[int | None] = mapped_column(Integer, default=None)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index('ix_rentals_account_created', 'account_id', 'created_at'),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status != RentalStatus.ACTIVE.value

    def is_overdue(self, now: datetime | None = None) -> bool:
        now = now or datetime.utcnow()
        return self.status == RentalStatus.ACTIVE.value and now > self.expires_at

    def transition(self, new_status: RentalStatus) -> None:
        """Move to `new_status`, rejecting anything but a legal transition."""
        current = RentalStatus(self.status)
        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise IllegalTransition(
                f'Rental {self.provider_rental_id} cannot go from {current.value} to {new_status.value}',
                {'rental_id': self.provider_rental_id, 'from': current.value, 'to': new_status.value},
            )
        self.status = new_status.value


class Message(Base):
    """One SMS delivered for a rental. Duplicate codes are collapsed at read time."""

    __tablename__ = 'messages'

    id: Mapped[int] = mapped_column(primary_key=True)
    rental_id: Mapped[int] = mapped_column(
        ForeignKey('rentals.id', ondelete='CASCADE'), index=True
    )
    account_id: Mapped[str] = mapped_column(
        ForeignKey('accounts.id', ondelete='CASCADE'), index=True
    )
    code: Mapped[str] = mapped_column(String(32))
    text: Mapped[str] = mapped_column(Text, default='')
    received_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
