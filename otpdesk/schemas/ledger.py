from datetime import datetime
from pydantic import BaseModel, Field


class TransactionResponse(BaseModel):
    """Single ledger entry response."""
    id: int
    account_id: str
    kind: str
    amount: int
    balance_before: int
    balance_after: int
    description: str
    metadata: dict | None = Field(None, validation_alias='details')
    rental_id: int | None
    created_at: datetime

    class Config:
        from_attributes = True
        populate_by_name = True


class CreditAdjustment(BaseModel):
    """Positive amount adds credits, negative deducts."""
    amount: int
    note: str = Field('', max_length=200)


class BulkCreditAdjustment(CreditAdjustment):
    user_ids: list[str] = Field(..., min_length=1)


class BulkFailureResponse(BaseModel):
    account_id: str
    kind: str
    reason: str


class BulkAdjustmentResponse(BaseModel):
    message: str
    succeeded: list[str]
    failed: list[BulkFailureResponse]
