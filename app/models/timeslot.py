"""
Pydantic models for delivery/collection/express timeslot configuration.
"""
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

TimeslotType = Literal["delivery", "collection", "express"]


class Timeslot(BaseModel):
    """One configured timeslot. Express slots carry the fee that drives a fee product."""

    id: str
    name: str = ""
    type: TimeslotType = "delivery"
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    fee: Optional[Decimal] = Field(None, max_digits=12)
    max_orders: int = 0
    cutoff_time: Optional[str] = None
    cutoff_day: Literal["same", "previous"] = "same"
    assigned_days: List[str] = Field(default_factory=list)
    parent_timeslot_id: Optional[str] = None


class TimeslotConfiguration(BaseModel):
    """Request/response model for the full timeslot configuration of a tenant."""

    timeslots: List[Timeslot] = Field(default_factory=list)
