from datetime import datetime
from pydantic import BaseModel


class StatsResponse(BaseModel):
    total_users: int
    active_users: int
    total_credits: int
    recent_transactions: int


class ProviderBalanceResponse(BaseModel):
    """Upstream account balance in USD."""
    balance: float
    status: str
    last_updated: datetime
