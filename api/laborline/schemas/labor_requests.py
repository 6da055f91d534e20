import re
from datetime import date, datetime, timedelta
from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StringConstraints, field_validator, model_validator
from pydantic.alias_generators import to_camel

ExperienceLevel = Literal[
    "Helper",
    "Apprentice",
    "Journeyman",
    "Foreman",
    "General Foreman",
    "Superintendent",
    "Project Manager",
]
LaborRequestStatus = Literal["pending", "active", "fulfilled", "cancelled"]

MAX_CRAFTS_PER_REQUEST = 10
MAX_START_DATE_LEAD_DAYS = 365
MAX_EMAIL_LENGTH = 100
_DIGIT_RE = re.compile(r"\d")

ProjectName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=200)]
CompanyName = Annotated[str, StringConstraints(strip_whitespace=True, min_length=2, max_length=200)]
ContactPhone = Annotated[str, StringConstraints(strip_whitespace=True, min_length=10, max_length=20)]
AdditionalDetails = Annotated[str, StringConstraints(strip_whitespace=True, max_length=2000)]
CraftNotes = Annotated[str, StringConstraints(strip_whitespace=True, max_length=500)]
Rate = Annotated[float, Field(gt=0, le=1000)]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CraftIn(_CamelModel):
    trade_id: UUID
    region_id: UUID
    experience_level: ExperienceLevel
    worker_count: int = Field(ge=1, le=500)
    start_date: date
    duration_days: int = Field(ge=1, le=365)
    hours_per_week: int = Field(ge=1, le=168)
    notes: CraftNotes | None = None
    pay_rate_min: Rate | None = None
    pay_rate_max: Rate | None = None
    per_diem_rate: Rate | None = None

    @field_validator("start_date")
    @classmethod
    def _start_date_in_range(cls, value: date) -> date:
        today = date.today()
        if value < today:
            raise ValueError("start date cannot be in the past")
        if value > today + timedelta(days=MAX_START_DATE_LEAD_DAYS):
            raise ValueError("start date cannot be more than 1 year in the future")
        return value

    @field_validator("notes")
    @classmethod
    def _blank_notes_to_none(cls, value: str | None) -> str | None:
        return value or None

    @model_validator(mode="after")
    def _pay_rates_consistent(self) -> "CraftIn":
        if (self.pay_rate_min is None) != (self.pay_rate_max is None):
            raise ValueError("both minimum and maximum pay rates must be provided together")
        if self.pay_rate_min is not None and self.pay_rate_max is not None and self.pay_rate_min > self.pay_rate_max:
            raise ValueError("minimum pay rate must be less than or equal to maximum")
        return self


class LaborRequestIn(_CamelModel):
    project_name: ProjectName
    company_name: CompanyName
    contact_email: EmailStr
    contact_phone: ContactPhone
    additional_details: AdditionalDetails | None = None
    crafts: list[CraftIn] = Field(min_length=1, max_length=MAX_CRAFTS_PER_REQUEST)

    @field_validator("contact_email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        if len(value) > MAX_EMAIL_LENGTH:
            raise ValueError(f"email must be at most {MAX_EMAIL_LENGTH} characters")
        return value.strip().lower()

    @field_validator("contact_phone")
    @classmethod
    def _phone_has_enough_digits(cls, value: str) -> str:
        if len(_DIGIT_RE.findall(value)) < 10:
            raise ValueError("phone number must contain at least 10 digits")
        return value

    @field_validator("additional_details")
    @classmethod
    def _blank_details_to_none(cls, value: str | None) -> str | None:
        return value or None

    @field_validator("crafts")
    @classmethod
    def _unique_trade_region(cls, crafts: list[CraftIn]) -> list[CraftIn]:
        seen: set[tuple[UUID, UUID]] = set()
        for craft in crafts:
            key = (craft.trade_id, craft.region_id)
            if key in seen:
                raise ValueError("each trade and region combination must be unique within a request")
            seen.add(key)
        return crafts


class CraftMatchCount(_CamelModel):
    craft_id: str
    matches: int


class NotificationFailure(_CamelModel):
    craft_id: str
    error: str


class LaborRequestAccepted(_CamelModel):
    success: bool = True
    request_id: str
    confirmation_token: str
    total_matches: int
    matches_by_craft: list[CraftMatchCount] = Field(default_factory=list)
    message: str
    notification_warning: str | None = None
    notification_errors: list[NotificationFailure] = Field(default_factory=list)


class CraftMatchSummary(_CamelModel):
    craft_name: str
    matches: int


class RequestSummary(_CamelModel):
    id: str
    project_name: str
    company_name: str
    contact_email: str
    contact_phone: str
    submitted_at: datetime
    craft_count: int


class MatchSummary(_CamelModel):
    total: int
    by_craft: list[CraftMatchSummary] = Field(default_factory=list)


class LaborRequestSummaryOut(_CamelModel):
    success: bool = True
    request: RequestSummary
    matches: MatchSummary
    expires_at: datetime
