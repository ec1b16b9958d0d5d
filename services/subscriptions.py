"""
Subscription lifecycle for tenant stores.

A subscription moves through ``trial``/``active`` -> ``past_due`` -> ``expired``
as its end date and grace window pass. ``canceled`` and ``expired`` are
terminal for the refresh job; only an explicit renewal brings an expired
subscription back to ``active``.
"""
import logging
import math
from dataclasses import dataclass, field, asdict
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from core.config import settings
from models.store import Store
from models.subscription import Subscription
from services import email as email_service

logger = logging.getLogger(__name__)

TRIAL = "trial"
ACTIVE = "active"
PAST_DUE = "past_due"
GRACE_PERIOD = "grace_period"
EXPIRED = "expired"
CANCELED = "canceled"

SUBSCRIPTION_STATUSES = (TRIAL, ACTIVE, PAST_DUE, GRACE_PERIOD, EXPIRED, CANCELED)
LIVE_STATUSES = (ACTIVE, TRIAL, GRACE_PERIOD)
REFRESHABLE_STATUSES = (TRIAL, ACTIVE, PAST_DUE, GRACE_PERIOD)
TERMINAL_STATUSES = (EXPIRED, CANCELED)
SUMMARY_STATUSES = (ACTIVE, PAST_DUE, EXPIRED)

SUSPENSION_REASON_EXPIRED = "Subscription expired"


class SubscriptionError(ValueError):
    """Base class for subscription rule violations."""


class StoreNotFound(SubscriptionError):
    pass


class SubscriptionConflict(SubscriptionError):
    pass


class InvalidTransition(SubscriptionError):
    pass


@dataclass
class UpdatedSubscription:
    id: int
    store_name: str
    old_status: str
    new_status: str
    updated_at: datetime


@dataclass
class RefreshResult:
    summary: Dict[str, int]
    updated_subscriptions: List[UpdatedSubscription] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def grace_end_date(subscription: Subscription) -> datetime:
    grace_days = subscription.grace_days
    if grace_days is None:
        grace_days = settings.SUBSCRIPTION_DEFAULT_GRACE_DAYS
    return subscription.end_date + timedelta(days=grace_days)


def days_until(moment: datetime, now: datetime) -> int:
    """Whole days from ``now`` to ``moment``, rounded up."""
    return math.ceil((moment - now).total_seconds() / 86400)


def classify(subscription: Subscription, now: datetime) -> str:
    """Return the status the subscription should hold at ``now``."""
    if subscription.status in TERMINAL_STATUSES:
        return subscription.status
    if now <= subscription.end_date:
        return subscription.status
    if now > grace_end_date(subscription):
        return EXPIRED
    # Inside the grace window an admin-granted grace_period is kept as is
    if subscription.status == GRACE_PERIOD:
        return GRACE_PERIOD
    return PAST_DUE


def suspend_store(store: Store, reason: str) -> bool:
    """Mark the store suspended; returns False when it already was."""
    if store.status == "suspended":
        return False
    store.status = "suspended"
    store.suspension_reason = reason
    return True


def _apply_status(subscription: Subscription, new_status: str, now: datetime) -> bool:
    subscription.status = new_status
    subscription.updated_at = now
    if new_status == PAST_DUE and subscription.grace_period_end is None:
        subscription.grace_period_end = grace_end_date(subscription)
    if new_status == EXPIRED:
        return suspend_store(subscription.store, SUSPENSION_REASON_EXPIRED)
    return False


def _owner_email(store: Store) -> Optional[str]:
    return store.owner.email if store.owner else None


def _notify_expiring(subscription: Subscription, days_left: int) -> None:
    store = subscription.store
    to_email = _owner_email(store)
    if not to_email:
        logger.info("Subscription %s expires in %s days; store %s has no owner to notify",
                    subscription.id, days_left, store.id)
        return
    email_service.send_templated_email(
        to_email,
        f"Your {store.name} subscription expires in {days_left} day{'s' if days_left != 1 else ''}",
        "emails/subscription_expiring.txt",
        {
            "store_name": store.name,
            "plan": subscription.plan,
            "days_left": days_left,
            "end_date": subscription.end_date.date().isoformat(),
            "auto_renew": subscription.auto_renew,
        },
    )


def _notify_suspended(subscription: Subscription) -> None:
    store = subscription.store
    to_email = _owner_email(store)
    if not to_email:
        return
    email_service.send_templated_email(
        to_email,
        f"{store.name} has been suspended",
        "emails/store_suspended.txt",
        {
            "store_name": store.name,
            "plan": subscription.plan,
            "grace_end_date": grace_end_date(subscription).date().isoformat(),
        },
    )


def status_summary(db: Session, updated: int = 0) -> Dict[str, int]:
    rows = (
        db.query(Subscription.status, func.count(Subscription.id))
        .filter(Subscription.status.in_(SUMMARY_STATUSES))
        .group_by(Subscription.status)
        .all()
    )
    counts = {status: count for status, count in rows}
    return {
        "total": sum(counts.values()),
        "active": counts.get(ACTIVE, 0),
        "past_due": counts.get(PAST_DUE, 0),
        "expired": counts.get(EXPIRED, 0),
        "updated": updated,
    }


def refresh_subscriptions(db: Session, now: Optional[datetime] = None) -> RefreshResult:
    """
    Reclassify every non-terminal subscription against ``now`` and persist changes.

    Each row is written inside its own savepoint so one failing update is
    logged and skipped without aborting the scan. Subscriptions reaching
    ``expired`` suspend their store. Active subscriptions close to their end
    date trigger a reminder e-mail to the store owner.
    """
    now = now or datetime.utcnow()
    subscriptions = (
        db.query(Subscription)
        .options(joinedload(Subscription.store).joinedload(Store.owner))
        .filter(Subscription.status.in_(REFRESHABLE_STATUSES))
        .order_by(Subscription.id)
        .all()
    )
    logger.info("Refreshing %d subscriptions", len(subscriptions))

    updated: List[UpdatedSubscription] = []
    expiring: List[tuple] = []
    suspended: List[Subscription] = []

    for subscription in subscriptions:
        old_status = subscription.status
        new_status = classify(subscription, now)

        if new_status == old_status:
            days_left = days_until(subscription.end_date, now)
            if (
                old_status == ACTIVE
                and 0 < days_left <= settings.SUBSCRIPTION_EXPIRY_WARNING_DAYS
                and subscription.expiry_reminder_sent_at is None
            ):
                logger.info("Subscription %s expires in %s days", subscription.id, days_left)
                subscription.expiry_reminder_sent_at = now
                expiring.append((subscription, days_left))
            continue

        try:
            with db.begin_nested():
                store_suspended = _apply_status(subscription, new_status, now)
        except SQLAlchemyError:
            logger.exception("Error updating subscription %s", subscription.id)
            continue

        logger.info("Subscription %s: %s -> %s", subscription.id, old_status, new_status)
        if store_suspended:
            logger.warning("Suspended store %s after subscription %s expired",
                           subscription.store_id, subscription.id)
            suspended.append(subscription)
        updated.append(
            UpdatedSubscription(
                id=subscription.id,
                store_name=subscription.store.name,
                old_status=old_status,
                new_status=new_status,
                updated_at=now,
            )
        )

    db.commit()

    for subscription, days_left in expiring:
        _notify_expiring(subscription, days_left)
    for subscription in suspended:
        _notify_suspended(subscription)

    return RefreshResult(summary=status_summary(db, len(updated)), updated_subscriptions=updated, timestamp=now)


def subscription_overview(db: Session, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Statistics for the admin console, derived from stored statuses."""
    now = now or datetime.utcnow()
    subscriptions = db.query(Subscription).options(joinedload(Subscription.store)).all()

    stats = {
        "total": len(subscriptions),
        "trial": 0,
        "active": 0,
        "past_due": 0,
        "expired": 0,
        "canceled": 0,
        "expiring_soon": 0,
        "grace_period": 0,
    }
    expiring_soon = []
    in_grace = []

    for subscription in subscriptions:
        store_name = subscription.store.name if subscription.store else "Unknown Store"
        # "grace_period" in stats counts rows inside their grace window, not the status
        if subscription.status in stats and subscription.status != GRACE_PERIOD:
            stats[subscription.status] += 1

        if subscription.status == ACTIVE:
            days_left = days_until(subscription.end_date, now)
            if 0 < days_left <= settings.SUBSCRIPTION_EXPIRY_WARNING_DAYS:
                stats["expiring_soon"] += 1
                expiring_soon.append({
                    "id": subscription.id,
                    "store_name": store_name,
                    "days_until_expiry": days_left,
                    "end_date": subscription.end_date,
                })
        elif subscription.status in (PAST_DUE, GRACE_PERIOD):
            grace_end = grace_end_date(subscription)
            if now <= grace_end:
                stats["grace_period"] += 1
                in_grace.append({
                    "id": subscription.id,
                    "store_name": store_name,
                    "grace_end_date": grace_end,
                    "days_remaining": days_until(grace_end, now),
                })

    return {
        "stats": stats,
        "expiring_soon": expiring_soon,
        "grace_period": in_grace,
        "timestamp": now,
    }


def _live_subscription(db: Session, store_id: int, exclude_id: Optional[int] = None) -> Optional[Subscription]:
    query = db.query(Subscription).filter(
        Subscription.store_id == store_id,
        Subscription.status.in_(LIVE_STATUSES),
    )
    if exclude_id is not None:
        query = query.filter(Subscription.id != exclude_id)
    return query.first()


def create_subscription(db: Session, data) -> Subscription:
    store = db.get(Store, data.store_id)
    if not store:
        raise StoreNotFound("Store not found")
    if data.status in LIVE_STATUSES and _live_subscription(db, store.id):
        raise SubscriptionConflict("Store already has an active subscription")

    values = data.model_dump()
    if values.get("grace_days") is None:
        values["grace_days"] = settings.SUBSCRIPTION_DEFAULT_GRACE_DAYS
    subscription = Subscription(**values)
    db.add(subscription)
    db.commit()
    db.refresh(subscription)
    logger.info("Created %s subscription %s for store %s", subscription.status, subscription.id, store.id)
    return subscription


def update_subscription(db: Session, subscription: Subscription, data) -> Subscription:
    changes = data.model_dump(exclude_unset=True)
    new_status = changes.get("status")
    if (
        new_status in LIVE_STATUSES
        and subscription.status not in LIVE_STATUSES
        and _live_subscription(db, subscription.store_id, exclude_id=subscription.id)
    ):
        raise SubscriptionConflict("Store already has an active subscription")

    start_date = changes.get("start_date", subscription.start_date)
    end_date = changes.get("end_date", subscription.end_date)
    if end_date < start_date:
        raise SubscriptionError("End date must be after start date")

    if "end_date" in changes and changes["end_date"] != subscription.end_date:
        subscription.expiry_reminder_sent_at = None
    for name, value in changes.items():
        setattr(subscription, name, value)
    db.commit()
    db.refresh(subscription)
    return subscription


def renew_subscription(
    db: Session,
    subscription: Subscription,
    now: Optional[datetime] = None,
    period_days: Optional[int] = None,
) -> Subscription:
    """Extend the subscription by one billing period and reactivate its store."""
    if subscription.status == CANCELED:
        raise InvalidTransition("Canceled subscriptions cannot be renewed")
    if subscription.status not in LIVE_STATUSES and _live_subscription(
        db, subscription.store_id, exclude_id=subscription.id
    ):
        raise SubscriptionConflict("Store already has an active subscription")

    now = now or datetime.utcnow()
    period = timedelta(days=period_days or settings.SUBSCRIPTION_PERIOD_DAYS)
    subscription.end_date = max(subscription.end_date, now) + period
    subscription.status = ACTIVE
    subscription.grace_period_end = None
    subscription.next_billing_date = subscription.end_date
    subscription.expiry_reminder_sent_at = None
    subscription.updated_at = now

    store = subscription.store
    if store.is_suspended and store.suspension_reason == SUSPENSION_REASON_EXPIRED:
        store.status = "active"
        store.suspension_reason = None
        logger.info("Reactivated store %s after renewal", store.id)

    db.commit()
    db.refresh(subscription)
    return subscription


def cancel_subscription(db: Session, subscription: Subscription, now: Optional[datetime] = None) -> Subscription:
    if subscription.status == CANCELED:
        raise InvalidTransition("Subscription is already canceled")
    subscription.status = CANCELED
    subscription.auto_renew = False
    subscription.next_billing_date = None
    subscription.updated_at = now or datetime.utcnow()
    db.commit()
    db.refresh(subscription)
    logger.info("Canceled subscription %s", subscription.id)
    return subscription
