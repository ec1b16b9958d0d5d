import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from core.db import get_db
from core.tenancy import (
    INVITABLE_ROLES,
    can_assign_role,
    can_manage_members,
    can_remove_member,
    check_store_access,
    get_store_or_404,
    get_store_usage_stats,
    get_user_role_in_store,
)
from models.store import Store
from models.user import User, user_store_map
from routes.auth import get_current_user
from schemas.store import MyStoreOut, StoreDetailOut, StoreOut
from schemas.users import InviteMemberRequest, StoreMemberOut, UpdateMemberRoleRequest
from services import members as member_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/stores", tags=["stores"])


def _require_member_manager(store: Store, user: User, db: Session, action: str) -> str:
    """Return the caller's role, or 403 unless they are owner/admin of the store."""
    role = get_user_role_in_store(user.id, store.id, db)
    if not role:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied to this store")
    if not can_manage_members(role):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=f"Insufficient permissions to {action}")
    return role


@router.get("/", response_model=List[MyStoreOut])
def list_my_stores(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = db.execute(
        select(Store, user_store_map.c.role)
        .join(user_store_map, user_store_map.c.store_id == Store.id)
        .where(user_store_map.c.user_id == user.id)
        .order_by(Store.created_at.desc())
    ).all()
    return [MyStoreOut(**StoreOut.model_validate(store).model_dump(), role=role) for store, role in rows]


@router.get("/{store_id}", response_model=StoreDetailOut)
def get_store(
    store: Store = Depends(get_store_or_404),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not check_store_access(user, store, db, required_role="viewer"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied to this store")
    return StoreDetailOut(
        **StoreOut.model_validate(store).model_dump(),
        role=get_user_role_in_store(user.id, store.id, db),
        usage=get_store_usage_stats(store.id, db),
    )


@router.get("/{store_id}/users", response_model=List[StoreMemberOut])
def list_store_users(
    store: Store = Depends(get_store_or_404),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _require_member_manager(store, user, db, "view users")
    return member_service.list_members(db, store.id)


@router.post("/{store_id}/users", response_model=StoreMemberOut, status_code=201)
def invite_store_user(
    data: InviteMemberRequest,
    store: Store = Depends(get_store_or_404),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _require_member_manager(store, user, db, "invite users")
    if data.role not in INVITABLE_ROLES:
        raise HTTPException(status_code=400, detail="Invalid role selected")
    try:
        member = member_service.invite_member(db, store, user, data.email, data.name, data.role)
    except member_service.AlreadyMember as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    logger.info("User %s invited %s to store %s as %s", user.id, member["user_id"], store.id, data.role)
    return member


@router.put("/{store_id}/users/{user_id}")
def update_store_user_role(
    user_id: int,
    data: UpdateMemberRoleRequest,
    store: Store = Depends(get_store_or_404),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    actor_role = _require_member_manager(store, user, db, "update user roles")
    if not can_assign_role(actor_role, data.role):
        raise HTTPException(status_code=403, detail="Only store owners can assign owner role")
    target_role = get_user_role_in_store(user_id, store.id, db)
    if target_role is None:
        raise HTTPException(status_code=404, detail="User not found in store")
    if target_role == "owner" and actor_role != "owner":
        raise HTTPException(status_code=403, detail="Only store owners can change an owner's role")

    member_service.set_member_role(db, store, user_id, data.role)
    db.commit()
    return {"success": True, "message": "User role updated successfully"}


@router.delete("/{store_id}/users/{user_id}")
def remove_store_user(
    user_id: int,
    store: Store = Depends(get_store_or_404),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    actor_role = _require_member_manager(store, user, db, "remove users")
    if user_id == user.id:
        raise HTTPException(status_code=400, detail="Cannot remove yourself from the store")
    target_role = get_user_role_in_store(user_id, store.id, db)
    if target_role is None:
        raise HTTPException(status_code=404, detail="User not found in store")
    if not can_remove_member(actor_role, target_role):
        raise HTTPException(status_code=403, detail="Only store owners can remove other owners")

    member_service.remove_member(db, store, user_id)
    db.commit()
    return {"success": True, "message": "User removed from store successfully"}
