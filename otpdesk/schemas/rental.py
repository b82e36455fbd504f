from datetime import datetime
from pydantic import BaseModel, Field


class RentalCreate(BaseModel):
    """Rent a number for a service at the site's price (credits)."""
    service: str = Field(..., min_length=1, max_length=50)
    price: int = Field(..., gt=0)


class RentalResponse(BaseModel):
    id: int
    rental_id: str = Field(..., validation_alias='provider_rental_id')
    phone_number: str
    service: str
    status: str
    price_charged: int
    provider_price: float | None
    created_at: datetime
    expires_at: datetime

    class Config:
        from_attributes = True
        populate_by_name = True


class MessageResponse(BaseModel):
    id: int
    code: str
    text: str
    received_at: datetime

    class Config:
        from_attributes = True


class PollResponse(BaseModel):
    """Settlement outcome: waiting, completed, cancelled or expired."""
    status: str
    rental: RentalResponse
    message: MessageResponse | None = None
