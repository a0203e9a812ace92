from sqlmodel import SQLModel, Field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    # В БД храним время с часовым поясом, всегда UTC
    return datetime.now(timezone.utc)


class VehicleStatus(str, Enum):
    available = "available"
    in_use = "in_use"


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    # None — «прокси»-сотрудник, заведённый админом, без Telegram
    telegram_id: Optional[int] = Field(default=None, unique=True, index=True)


class Destination(SQLModel, table=True):
    __tablename__ = "destinations"

    name: str = Field(primary_key=True)


class Journey(SQLModel, table=True):
    __tablename__ = "journeys"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="users.id", index=True)
    vehicle_name: str = Field(index=True)
    destination: str
    assigned_at: datetime = Field(index=True)
    returned_at: Optional[datetime] = None
    total_time: Optional[str] = None


class Vehicle(SQLModel, table=True):
    __tablename__ = "vehicles"

    name: str = Field(primary_key=True)
    status: VehicleStatus = Field(default=VehicleStatus.available, index=True)

    current_employee: Optional[str] = None
    # unique: у одного сотрудника не может быть двух машин
    assigned_user_id: Optional[int] = Field(default=None, foreign_key="users.id", unique=True)
    current_destination: Optional[str] = None
    assigned_at: Optional[datetime] = None
    journey_id: Optional[int] = Field(default=None, foreign_key="journeys.id")

    @property
    def in_use(self) -> bool:
        return self.status == VehicleStatus.in_use
