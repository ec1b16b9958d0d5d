from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

Plan = Literal["basic", "pro"]
SubscriptionStatus = Literal["trial", "active", "past_due", "grace_period", "expired", "canceled"]


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored timestamps are naive UTC; convert aware input onto that clock."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class SubscriptionCreate(BaseModel):
    store_id: int
    plan: Plan
    status: SubscriptionStatus = "trial"
    start_date: datetime
    end_date: datetime
    grace_days: Optional[int] = Field(default=None, ge=0, le=365)
    grace_period_end: Optional[datetime] = None
    trial_end_date: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    auto_renew: bool = False

    @field_validator("start_date", "end_date", "grace_period_end", "trial_end_date", "next_billing_date")
    @classmethod
    def normalize_dates(cls, value):
        return naive_utc(value)

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("End date must be after start date")
        return self


class SubscriptionUpdate(BaseModel):
    plan: Optional[Plan] = None
    status: Optional[SubscriptionStatus] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    grace_days: Optional[int] = Field(default=None, ge=0, le=365)
    grace_period_end: Optional[datetime] = None
    trial_end_date: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    auto_renew: Optional[bool] = None

    @field_validator("start_date", "end_date", "grace_period_end", "trial_end_date", "next_billing_date")
    @classmethod
    def normalize_dates(cls, value):
        return naive_utc(value)

    @field_validator("plan", "status", "start_date", "end_date", "auto_renew")
    @classmethod
    def reject_null(cls, value):
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class SubscriptionStoreOut(BaseModel):
    id: int
    name: str
    status: str

    class Config:
        from_attributes = True


class SubscriptionOut(BaseModel):
    id: int
    store_id: int
    plan: str
    status: str
    start_date: datetime
    end_date: datetime
    grace_days: Optional[int] = None
    grace_period_end: Optional[datetime] = None
    trial_end_date: Optional[datetime] = None
    next_billing_date: Optional[datetime] = None
    auto_renew: bool
    expiry_reminder_sent_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    store: Optional[SubscriptionStoreOut] = None

    class Config:
        from_attributes = True


class RenewRequest(BaseModel):
    period_days: Optional[int] = Field(default=None, ge=1, le=3660)


class UpdatedSubscriptionOut(BaseModel):
    id: int
    store_name: str
    old_status: str
    new_status: str
    updated_at: datetime


class RefreshSummary(BaseModel):
    total: int
    active: int
    past_due: int
    expired: int
    updated: int


class RefreshResponse(BaseModel):
    success: bool = True
    message: str = "Subscriptions refreshed successfully"
    summary: RefreshSummary
    updated_subscriptions: List[UpdatedSubscriptionOut]
    timestamp: datetime


class OverviewStats(BaseModel):
    total: int
    trial: int
    active: int
    past_due: int
    expired: int
    canceled: int
    expiring_soon: int
    grace_period: int


class ExpiringSoonOut(BaseModel):
    id: int
    store_name: str
    days_until_expiry: int
    end_date: datetime


class GracePeriodOut(BaseModel):
    id: int
    store_name: str
    grace_end_date: datetime
    days_remaining: int


class OverviewResponse(BaseModel):
    success: bool = True
    stats: OverviewStats
    expiring_soon: List[ExpiringSoonOut]
    grace_period: List[GracePeriodOut]
    timestamp: datetime
