from datetime import datetime
from pydantic import BaseModel, Field


class AccountResponse(BaseModel):
    """Account as seen by the admin console."""
    id: str
    email: str
    first_name: str
    last_name: str
    phone: str | None
    balance: int
    role: str
    status: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class AccountStatusUpdate(BaseModel):
    status: str = Field(..., pattern=r'^(active|suspended|banned)$')


class BalanceResponse(BaseModel):
    """Own balance plus profile basics."""
    credits: int
    email: str = ''
    first_name: str = ''
    last_name: str = ''
