from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional


class TenantOut(BaseModel):
    id: str
    name: str
    slug: str
    timezone: str


class SessionTypeIn(BaseModel):
    name: str
    description: Optional[str] = ""
    durationMinutes: int = Field(gt=0)
    price: Decimal = Field(ge=0)
    currency: str = "USD"
    isActive: bool = True


class SessionTypeOut(BaseModel):
    id: str
    name: str
    description: str = ""
    durationMinutes: int
    price: Decimal
    currency: str
    isActive: bool


class BlockedSlotIn(BaseModel):
    startTime: datetime
    endTime: datetime
    reason: Optional[str] = ""


class BlockedSlotOut(BaseModel):
    id: str
    startTime: datetime
    endTime: datetime
    reason: str = ""
    createdBy: str = ""


class TenantTimezoneUpdate(BaseModel):
    timezone: str


class BusinessHoursIn(BaseModel):
    dayOfWeek: int = Field(ge=0, le=6)  # 0 = Monday
    startTime: str  # "HH:MM"
    endTime: str
    enabled: bool = True


class BusinessHoursOut(BaseModel):
    id: str
    dayOfWeek: int
    startTime: str
    endTime: str
    enabled: bool
