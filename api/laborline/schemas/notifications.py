from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

NotificationStatusValue = Literal["pending", "sent", "failed", "new", "viewed", "responded", "archived"]
InboxStatusFilter = Literal["all", "pending", "sent", "failed", "new", "viewed", "responded", "archived"]


class NotificationOut(BaseModel):
    id: str
    labor_request_id: str
    craft_id: str
    agency_id: str
    status: NotificationStatusValue
    sent_at: datetime | None = None
    viewed_at: datetime | None = None
    responded_at: datetime | None = None
    delivery_error: str | None = None
    created_at: datetime


class RespondRequest(BaseModel):
    interested: bool
    message: str | None = Field(default=None, max_length=2000)


class DeliveryReport(BaseModel):
    status: Literal["sent", "failed"]
    delivery_error: str | None = Field(default=None, max_length=2000)


class InboxLaborRequestOut(BaseModel):
    id: str
    project_name: str
    company_name: str
    contact_email: str
    contact_phone: str
    additional_details: str | None = None


class InboxCraftOut(BaseModel):
    id: str
    trade_name: str = "Unknown Trade"
    region_name: str = "Unknown Region"
    state_code: str = "XX"
    experience_level: str
    worker_count: int
    start_date: date
    duration_days: int
    hours_per_week: int
    pay_rate_min: float | None = None
    pay_rate_max: float | None = None
    per_diem_rate: float | None = None
    notes: str | None = None


class InboxNotificationOut(BaseModel):
    id: str
    status: NotificationStatusValue
    sent_at: datetime | None = None
    viewed_at: datetime | None = None
    responded_at: datetime | None = None
    created_at: datetime
    labor_request: InboxLaborRequestOut
    craft: InboxCraftOut


class InboxOut(BaseModel):
    notifications: list[InboxNotificationOut] = Field(default_factory=list)
    total: int
