"""
Pydantic schemas for table availability.
"""

from typing import Optional

from pydantic import BaseModel


class TableResponse(BaseModel):
    id: int
    table_number: str
    seats: int
    theme: str
    price_multiplier: float

    model_config = {"from_attributes": True}


class OperatingHours(BaseModel):
    is_open: bool
    open: Optional[str] = None
    close: Optional[str] = None


class AvailabilityResponse(BaseModel):
    branch_id: int
    date: str
    start_time: str
    end_time: str
    party_size: int
    available: bool
    reason: Optional[str] = None
    operating_hours: OperatingHours
    tables: list[TableResponse]
