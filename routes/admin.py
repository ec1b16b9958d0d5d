import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session, selectinload

from core.db import get_db
from core.tenancy import get_store_usage_stats
from models.store import Store
from models.subscription import Subscription
from models.user import User
from routes.auth import require_super_admin
from schemas.store import AdminStoreOut, StoreCreate, StoreOut, StoreUpdate
from schemas.subscription import (
    OverviewResponse,
    RefreshResponse,
    RenewRequest,
    SubscriptionCreate,
    SubscriptionOut,
    SubscriptionUpdate,
)
from services import members as member_service
from services import subscriptions as subscription_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_super_admin)])

DEFAULT_SUSPENSION_REASON = "Suspended by administrator"


def _admin_store_out(store: Store, db: Session) -> AdminStoreOut:
    live = next((s for s in store.subscriptions if s.status in subscription_service.LIVE_STATUSES), None)
    return AdminStoreOut(
        **StoreOut.model_validate(store).model_dump(),
        user_count=member_service.count_members(db, store.id),
        subscription_count=len(store.subscriptions),
        active_subscription=SubscriptionOut.model_validate(live) if live else None,
        usage=get_store_usage_stats(store.id, db),
    )


def _get_store(store_id: int, db: Session) -> Store:
    store = db.get(Store, store_id)
    if not store:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Store not found")
    return store


def _get_subscription(subscription_id: int, db: Session) -> Subscription:
    subscription = db.get(Subscription, subscription_id)
    if not subscription:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Subscription not found")
    return subscription


def _get_owner(owner_id: int, db: Session) -> User:
    owner = db.get(User, owner_id)
    if not owner:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Owner not found")
    return owner


# Stores

@router.get("/stores", response_model=List[AdminStoreOut])
def list_stores(db: Session = Depends(get_db)):
    stores = (
        db.query(Store)
        .options(selectinload(Store.subscriptions))
        .order_by(Store.created_at.desc(), Store.id.desc())
        .all()
    )
    return [_admin_store_out(store, db) for store in stores]


@router.post("/stores", response_model=AdminStoreOut, status_code=201)
def create_store(data: StoreCreate, db: Session = Depends(get_db)):
    owner = _get_owner(data.owner_id, db) if data.owner_id else None
    store = Store(name=data.name.strip(), plan=data.plan, status=data.status)
    if data.status == "suspended":
        store.suspension_reason = DEFAULT_SUSPENSION_REASON
    db.add(store)
    db.flush()
    if owner:
        member_service.assign_owner(db, store, owner)
    db.commit()
    db.refresh(store)
    logger.info("Created store %s (%s)", store.id, store.name)
    return _admin_store_out(store, db)


@router.patch("/stores/{store_id}", response_model=AdminStoreOut)
def update_store(store_id: int, data: StoreUpdate, db: Session = Depends(get_db)):
    store = _get_store(store_id, db)
    changes = data.model_dump(exclude_unset=True)

    if changes.get("name") is not None:
        store.name = changes["name"].strip()
    if changes.get("plan") is not None:
        store.plan = changes["plan"]
    if changes.get("status") is not None:
        store.status = changes["status"]
        if store.status == "suspended":
            store.suspension_reason = changes.get("suspension_reason") or DEFAULT_SUSPENSION_REASON
        else:
            store.suspension_reason = None
        logger.info("Store %s status set to %s", store.id, store.status)
    if changes.get("owner_id") is not None and changes["owner_id"] != store.owner_id:
        member_service.assign_owner(db, store, _get_owner(changes["owner_id"], db))

    db.commit()
    db.refresh(store)
    return _admin_store_out(store, db)


@router.delete("/stores/{store_id}")
def delete_store(store_id: int, db: Session = Depends(get_db)):
    store = _get_store(store_id, db)
    db.delete(store)
    db.commit()
    logger.info("Deleted store %s", store_id)
    return {"message": "Store deleted successfully"}


# Subscriptions

@router.get("/subscriptions", response_model=List[SubscriptionOut])
def list_subscriptions(db: Session = Depends(get_db)):
    return (
        db.query(Subscription)
        .options(selectinload(Subscription.store))
        .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        .all()
    )


@router.post("/subscriptions", response_model=SubscriptionOut, status_code=201)
def create_subscription(data: SubscriptionCreate, db: Session = Depends(get_db)):
    try:
        return subscription_service.create_subscription(db, data)
    except subscription_service.StoreNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except subscription_service.SubscriptionConflict as exc:
        raise HTTPException(status_code=409, detail=str(exc))


@router.patch("/subscriptions/{subscription_id}", response_model=SubscriptionOut)
def update_subscription(subscription_id: int, data: SubscriptionUpdate, db: Session = Depends(get_db)):
    subscription = _get_subscription(subscription_id, db)
    try:
        return subscription_service.update_subscription(db, subscription, data)
    except subscription_service.SubscriptionConflict as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except subscription_service.SubscriptionError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.delete("/subscriptions/{subscription_id}")
def delete_subscription(subscription_id: int, db: Session = Depends(get_db)):
    subscription = _get_subscription(subscription_id, db)
    db.delete(subscription)
    db.commit()
    return {"message": "Subscription deleted successfully"}


@router.post("/subscriptions/{subscription_id}/renew", response_model=SubscriptionOut)
def renew_subscription(subscription_id: int, data: RenewRequest | None = None, db: Session = Depends(get_db)):
    subscription = _get_subscription(subscription_id, db)
    try:
        return subscription_service.renew_subscription(
            db, subscription, period_days=data.period_days if data else None
        )
    except subscription_service.SubscriptionConflict as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except subscription_service.SubscriptionError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.post("/subscriptions/{subscription_id}/cancel", response_model=SubscriptionOut)
def cancel_subscription(subscription_id: int, db: Session = Depends(get_db)):
    subscription = _get_subscription(subscription_id, db)
    try:
        return subscription_service.cancel_subscription(db, subscription)
    except subscription_service.SubscriptionError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


# Lifecycle refresh

@router.post("/refresh-subscriptions", response_model=RefreshResponse)
def refresh_subscriptions(db: Session = Depends(get_db)):
    result = subscription_service.refresh_subscriptions(db)
    logger.info("Manual subscription refresh: %s", result.summary)
    return result.to_dict()


@router.get("/refresh-subscriptions", response_model=OverviewResponse)
def subscription_statistics(db: Session = Depends(get_db)):
    return subscription_service.subscription_overview(db)
