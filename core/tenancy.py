from typing import Optional
from datetime import datetime
from fastapi import HTTPException, status, Depends
from sqlalchemy.orm import Session
from sqlalchemy import func

from core.db import get_db
from models.store import Store
from models.user import User, user_store_map


ROLE_HIERARCHY = {"owner": 5, "admin": 4, "manager": 3, "staff": 2, "viewer": 1}
STORE_ROLES = tuple(ROLE_HIERARCHY)
INVITABLE_ROLES = ("admin", "manager", "staff", "viewer")
MEMBER_MANAGER_ROLES = ("owner", "admin")


def role_level(role: Optional[str]) -> int:
    return ROLE_HIERARCHY.get(role or "", 0)


def has_store_role(role: Optional[str], required_role: str) -> bool:
    """True when ``role`` ranks at or above ``required_role``."""
    return role_level(role) >= role_level(required_role) > 0


def get_store_or_404(store_id: int, db: Session = Depends(get_db)) -> Store:
    """FastAPI dependency returning the store from the path, refusing unusable tenants."""
    store = db.get(Store, store_id)
    if not store:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")

    if store.is_suspended:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Store is suspended: {store.suspension_reason or 'Contact support'}"
        )

    if store.status == "inactive":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Store is inactive")

    return store


def get_user_role_in_store(user_id: int, store_id: int, db: Session) -> Optional[str]:
    """Get user's role in a specific store."""
    result = db.query(user_store_map.c.role).filter(
        user_store_map.c.user_id == user_id,
        user_store_map.c.store_id == store_id
    ).first()
    return result[0] if result else None


def check_store_access(user: User, store: Store, db: Session, required_role: Optional[str] = None) -> bool:
    """Check if user has access to store with optional role requirement."""
    if user.is_superadmin:
        return True

    role = get_user_role_in_store(user.id, store.id, db)
    if not role:
        return False

    if required_role:
        return has_store_role(role, required_role)

    return True


def can_manage_members(role: Optional[str]) -> bool:
    return role in MEMBER_MANAGER_ROLES


def can_assign_role(actor_role: Optional[str], new_role: str) -> bool:
    """Owners may hand out any role; admins anything below owner."""
    if not can_manage_members(actor_role) or new_role not in ROLE_HIERARCHY:
        return False
    if new_role == "owner":
        return actor_role == "owner"
    return True


def can_remove_member(actor_role: Optional[str], target_role: Optional[str]) -> bool:
    if not can_manage_members(actor_role):
        return False
    if target_role == "owner":
        return actor_role == "owner"
    return True


def get_store_usage_stats(store_id: int, db: Session) -> dict:
    """Get current usage statistics for a store."""
    from models.product import Product
    from models.order import Order
    from models.invoice import Invoice

    product_count = db.query(func.count(Product.id)).filter(Product.store_id == store_id).scalar()

    # Orders this month
    now = datetime.utcnow()
    month_start = datetime(now.year, now.month, 1)
    orders_this_month = db.query(func.count(Order.id)).filter(
        Order.store_id == store_id,
        Order.created_at >= month_start
    ).scalar()

    unpaid_invoices = db.query(func.count(Invoice.id)).filter(
        Invoice.store_id == store_id,
        Invoice.status == "unpaid"
    ).scalar()

    return {
        "product_count": product_count,
        "orders_this_month": orders_this_month,
        "unpaid_invoices": unpaid_invoices,
    }
