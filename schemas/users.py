from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, EmailStr, Field

StoreRole = Literal["owner", "admin", "manager", "staff", "viewer"]


class UserOut(BaseModel):
    id: int
    name: str
    email: EmailStr
    system_role: Optional[str] = None

    class Config:
        from_attributes = True


class StoreMemberOut(BaseModel):
    user_id: int
    name: Optional[str] = None
    email: Optional[str] = None
    role: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class InviteMemberRequest(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1, max_length=200)
    role: StoreRole


class UpdateMemberRoleRequest(BaseModel):
    role: StoreRole
