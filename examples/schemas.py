from pydantic import BaseModel, ConfigDict
from typing import Optional
import datetime


# -------------------
# Host Schemas
# -------------------

class HostResponse(BaseModel):
    id: int
    username: str

    model_config = ConfigDict(from_attributes=True)


# -------------------
# Listing Schemas
# -------------------

class ListingBase(BaseModel):
    title: str
    description: str
    price: int
    location: str
    country: str
    is_available: bool = True


class ListingResponse(ListingBase):
    id: int
    created_at: datetime.datetime
    host: Optional[HostResponse] = None

    model_config = ConfigDict(from_attributes=True)


class ListingSummary(ListingBase):
    """Plain record produced by the aggregation pipeline."""

    id: int
    created_at: datetime.datetime
    host: Optional[HostResponse] = None
    price_range: str


# -------------------
# Stats Schemas
# -------------------

class CountryStats(BaseModel):
    country: str
    listings: int
    avg_price: float

    model_config = ConfigDict(from_attributes=True)
