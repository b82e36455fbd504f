from otpdesk.schemas.account import AccountResponse, AccountStatusUpdate, BalanceResponse
from otpdesk.schemas.ledger import (
    TransactionResponse,
    CreditAdjustment,
    BulkCreditAdjustment,
    BulkAdjustmentResponse,
)
from otpdesk.schemas.rental import RentalCreate, RentalResponse, MessageResponse, PollResponse
from otpdesk.schemas.admin import StatsResponse, ProviderBalanceResponse

__all__ = [
    'AccountResponse',
    'AccountStatusUpdate',
    'BalanceResponse',
    'TransactionResponse',
    'CreditAdjustment',
    'BulkCreditAdjustment',
    'BulkAdjustmentResponse',
    'RentalCreate',
    'RentalResponse',
    'MessageResponse',
    'PollResponse',
    'StatsResponse',
    'ProviderBalanceResponse',
]
