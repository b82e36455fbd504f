from otpdesk.models.account import Account, Role, AccountStatus
from otpdesk.models.ledger import Transaction, TransactionKind
from otpdesk.models.rental import Rental, RentalStatus, Message

__all__ = [
    'Account',
    'Role',
    'AccountStatus',
    'Transaction',
    'TransactionKind',
    'Rental',
    'RentalStatus',
    'Message',
]
