from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from schemas.subscription import Plan, SubscriptionOut

StoreStatus = Literal["active", "inactive", "suspended"]


class StoreCreate(BaseModel):
    name: str = Field(min_length=1, max_length=150)
    plan: Plan = "basic"
    status: StoreStatus = "active"
    owner_id: Optional[int] = None


class StoreUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=150)
    plan: Optional[Plan] = None
    status: Optional[StoreStatus] = None
    suspension_reason: Optional[str] = None
    owner_id: Optional[int] = None


class StoreOut(BaseModel):
    id: int
    name: str
    plan: str
    status: str
    owner_id: Optional[int] = None
    suspension_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class StoreUsage(BaseModel):
    product_count: int
    orders_this_month: int
    unpaid_invoices: int


class AdminStoreOut(StoreOut):
    user_count: int
    subscription_count: int
    active_subscription: Optional[SubscriptionOut] = None
    usage: StoreUsage


class MyStoreOut(StoreOut):
    role: str


class StoreDetailOut(StoreOut):
    role: Optional[str] = None
    usage: StoreUsage
