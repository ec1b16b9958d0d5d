import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from models.store import Store
from models.user import User, user_store_map
from services import email as email_service

logger = logging.getLogger(__name__)


class MembershipError(ValueError):
    pass


class AlreadyMember(MembershipError):
    pass


class NotAMember(MembershipError):
    pass


def list_members(db: Session, store_id: int) -> List[dict]:
    rows = db.execute(
        select(
            user_store_map.c.user_id,
            user_store_map.c.name,
            user_store_map.c.email,
            user_store_map.c.role,
            user_store_map.c.created_at,
            user_store_map.c.updated_at,
        )
        .where(user_store_map.c.store_id == store_id)
        .order_by(user_store_map.c.created_at.desc(), user_store_map.c.user_id.desc())
    ).mappings().all()
    return [dict(row) for row in rows]


def count_members(db: Session, store_id: int) -> int:
    return db.execute(
        select(func.count()).select_from(user_store_map).where(user_store_map.c.store_id == store_id)
    ).scalar_one()


def get_member_role(db: Session, store_id: int, user_id: int) -> Optional[str]:
    return db.execute(
        select(user_store_map.c.role).where(
            user_store_map.c.store_id == store_id,
            user_store_map.c.user_id == user_id,
        )
    ).scalar_one_or_none()


def add_member(db: Session, store: Store, user: User, role: str) -> None:
    """Insert the membership row; the caller commits."""
    if get_member_role(db, store.id, user.id) is not None:
        raise AlreadyMember("User is already a member of this store")
    db.execute(
        user_store_map.insert().values(
            user_id=user.id,
            store_id=store.id,
            role=role,
            name=user.name,
            email=user.email,
        )
    )


def _other_owner_id(db: Session, store_id: int, user_id: int) -> Optional[int]:
    return db.execute(
        select(user_store_map.c.user_id)
        .where(
            user_store_map.c.store_id == store_id,
            user_store_map.c.role == "owner",
            user_store_map.c.user_id != user_id,
        )
        .order_by(user_store_map.c.created_at, user_store_map.c.user_id)
        .limit(1)
    ).scalar_one_or_none()


def _sync_owner(db: Session, store: Store, user_id: int, role: Optional[str]) -> None:
    """Keep ``store.owner_id`` pointing at a member holding the owner role."""
    if role == "owner":
        store.owner_id = user_id
    elif store.owner_id == user_id:
        store.owner_id = _other_owner_id(db, store.id, user_id)


def set_member_role(db: Session, store: Store, user_id: int, role: str) -> None:
    result = db.execute(
        user_store_map.update()
        .where(user_store_map.c.store_id == store.id, user_store_map.c.user_id == user_id)
        .values(role=role, updated_at=datetime.utcnow())
    )
    if result.rowcount == 0:
        raise NotAMember("User not found in store")
    _sync_owner(db, store, user_id, role)


def remove_member(db: Session, store: Store, user_id: int) -> None:
    result = db.execute(
        user_store_map.delete().where(
            user_store_map.c.store_id == store.id,
            user_store_map.c.user_id == user_id,
        )
    )
    if result.rowcount == 0:
        raise NotAMember("User not found in store")
    _sync_owner(db, store, user_id, None)


def assign_owner(db: Session, store: Store, user: User) -> None:
    """Make ``user`` the store owner; the previous owner stays on as admin."""
    previous_id = store.owner_id
    if get_member_role(db, store.id, user.id) is None:
        add_member(db, store, user, "owner")
    else:
        set_member_role(db, store, user.id, "owner")
    store.owner_id = user.id
    if previous_id and previous_id != user.id and get_member_role(db, store.id, previous_id) == "owner":
        set_member_role(db, store, previous_id, "admin")


def invite_member(db: Session, store: Store, inviter: User, email: str, name: str, role: str) -> dict:
    """Add a user to the store, creating the account when the e-mail is new."""
    email = email.lower()
    user = db.query(User).filter(User.email == email).one_or_none()
    if user is None:
        user = User(name=name.strip(), email=email)
        db.add(user)
        db.flush()
        logger.info("Created account %s for invitation to store %s", user.id, store.id)

    try:
        add_member(db, store, user, role)
        db.commit()
    except MembershipError:
        db.rollback()
        raise

    email_service.send_templated_email(
        user.email,
        f"You have been added to {store.name}",
        "emails/store_invitation.txt",
        {
            "name": user.name,
            "email": user.email,
            "store_name": store.name,
            "role": role,
            "inviter_name": inviter.name,
        },
    )
    return {"user_id": user.id, "name": user.name, "email": user.email, "role": role}
