from pydantic import BaseModel, ConfigDict
from datetime import date, datetime
from typing import Optional
from .models import VehicleStatus


class VehicleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    status: VehicleStatus
    current_employee: Optional[str] = None
    current_destination: Optional[str] = None
    assigned_at: Optional[datetime] = None


class JourneyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    vehicle_name: str
    destination: str
    assigned_at: datetime
    returned_at: Optional[datetime] = None
    total_time: Optional[str] = None


class JourneyReportRead(BaseModel):
    user_id: int
    day: date
    journeys: list[JourneyRead]
