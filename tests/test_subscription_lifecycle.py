"""
Tests for the subscription lifecycle: classification, the refresh job and
the admin-side transitions (create, update, renew, cancel).
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from models.subscription import Subscription
from schemas.subscription import SubscriptionCreate, SubscriptionUpdate
from services import subscriptions as svc

NOW = datetime(2026, 3, 15, 12, 0, 0)


def _sub(end_date, status="active", grace_days=7):
    return Subscription(status=status, end_date=end_date, start_date=end_date - timedelta(days=30), grace_days=grace_days)


class TestGraceWindow:
    def test_grace_end_adds_grace_days(self):
        sub = _sub(NOW, grace_days=3)
        assert svc.grace_end_date(sub) == NOW + timedelta(days=3)

    def test_missing_grace_days_uses_default(self):
        sub = _sub(NOW, grace_days=None)
        assert svc.grace_end_date(sub) == NOW + timedelta(days=7)

    def test_zero_grace_days_means_no_grace(self):
        sub = _sub(NOW, grace_days=0)
        assert svc.grace_end_date(sub) == NOW

    def test_days_until_rounds_up(self):
        assert svc.days_until(NOW + timedelta(days=2, hours=1), NOW) == 3
        assert svc.days_until(NOW + timedelta(days=2), NOW) == 2
        assert svc.days_until(NOW - timedelta(hours=5), NOW) == 0


class TestClassify:
    def test_before_end_date_is_unchanged(self):
        assert svc.classify(_sub(NOW + timedelta(days=1)), NOW) == "active"
        assert svc.classify(_sub(NOW + timedelta(days=1), status="trial"), NOW) == "trial"

    def test_exactly_at_end_date_is_unchanged(self):
        assert svc.classify(_sub(NOW), NOW) == "active"

    def test_inside_grace_window_is_past_due(self):
        assert svc.classify(_sub(NOW - timedelta(days=2)), NOW) == "past_due"

    def test_last_moment_of_grace_window_is_past_due(self):
        assert svc.classify(_sub(NOW - timedelta(days=7)), NOW) == "past_due"

    def test_after_grace_window_is_expired(self):
        assert svc.classify(_sub(NOW - timedelta(days=7, seconds=1)), NOW) == "expired"

    def test_zero_grace_expires_immediately(self):
        assert svc.classify(_sub(NOW - timedelta(seconds=1), grace_days=0), NOW) == "expired"

    def test_grace_period_status_is_kept_inside_window(self):
        assert svc.classify(_sub(NOW - timedelta(days=1), status="grace_period"), NOW) == "grace_period"

    def test_terminal_statuses_are_never_reclassified(self):
        long_ago = NOW - timedelta(days=365)
        assert svc.classify(_sub(long_ago, status="canceled"), NOW) == "canceled"
        assert svc.classify(_sub(long_ago, status="expired"), NOW) == "expired"


class TestRefreshSubscriptions:
    def test_writes_changed_statuses(self, db, store, make_store, make_subscription):
        other = make_store("Second Shop")
        healthy = make_subscription(store, NOW + timedelta(days=20))
        overdue = make_subscription(other, NOW - timedelta(days=2))

        result = svc.refresh_subscriptions(db, now=NOW)

        db.refresh(healthy)
        db.refresh(overdue)
        assert healthy.status == "active"
        assert overdue.status == "past_due"
        assert overdue.grace_period_end == NOW - timedelta(days=2) + timedelta(days=7)
        assert overdue.updated_at == NOW
        assert [(u.id, u.old_status, u.new_status) for u in result.updated_subscriptions] == [
            (overdue.id, "active", "past_due")
        ]
        assert result.updated_subscriptions[0].store_name == "Second Shop"

    def test_expiry_suspends_store(self, db, store, make_subscription):
        sub = make_subscription(store, NOW - timedelta(days=10))

        svc.refresh_subscriptions(db, now=NOW)

        db.refresh(sub)
        db.refresh(store)
        assert sub.status == "expired"
        assert store.status == "suspended"
        assert store.suspension_reason == svc.SUSPENSION_REASON_EXPIRED

    def test_past_due_progresses_to_expired(self, db, store, make_subscription):
        sub = make_subscription(store, NOW - timedelta(days=8), status="past_due")

        result = svc.refresh_subscriptions(db, now=NOW)

        db.refresh(sub)
        assert sub.status == "expired"
        assert result.summary["updated"] == 1

    def test_past_due_does_not_suspend_store(self, db, store, make_subscription):
        make_subscription(store, NOW - timedelta(days=1))

        svc.refresh_subscriptions(db, now=NOW)

        db.refresh(store)
        assert store.status == "active"

    def test_terminal_subscriptions_are_skipped(self, db, store, make_store, make_subscription):
        canceled = make_subscription(store, NOW - timedelta(days=90), status="canceled")

        result = svc.refresh_subscriptions(db, now=NOW)

        db.refresh(canceled)
        db.refresh(store)
        assert canceled.status == "canceled"
        assert store.status == "active"
        assert result.updated_subscriptions == []

    def test_is_idempotent(self, db, store, make_subscription):
        make_subscription(store, NOW - timedelta(days=3))

        first = svc.refresh_subscriptions(db, now=NOW)
        second = svc.refresh_subscriptions(db, now=NOW)

        assert len(first.updated_subscriptions) == 1
        assert second.updated_subscriptions == []

    def test_summary_counts(self, db, make_store, make_subscription):
        make_subscription(make_store("A"), NOW + timedelta(days=30))
        make_subscription(make_store("B"), NOW + timedelta(days=30))
        make_subscription(make_store("C"), NOW - timedelta(days=1))
        make_subscription(make_store("D"), NOW - timedelta(days=30))
        make_subscription(make_store("E"), NOW + timedelta(days=30), status="trial")

        result = svc.refresh_subscriptions(db, now=NOW)

        assert result.summary == {"total": 4, "active": 2, "past_due": 1, "expired": 1, "updated": 2}
        assert result.timestamp == NOW

    def test_failed_row_is_skipped(self, db, make_store, make_subscription, monkeypatch):
        broken = make_subscription(make_store("Broken"), NOW - timedelta(days=2))
        fine = make_subscription(make_store("Fine"), NOW - timedelta(days=2))
        real_apply = svc._apply_status

        def _apply(subscription, new_status, now):
            if subscription.id == broken.id:
                raise SQLAlchemyError("write failed")
            return real_apply(subscription, new_status, now)

        monkeypatch.setattr(svc, "_apply_status", _apply)

        result = svc.refresh_subscriptions(db, now=NOW)

        db.refresh(broken)
        db.refresh(fine)
        assert broken.status == "active"
        assert fine.status == "past_due"
        assert [u.id for u in result.updated_subscriptions] == [fine.id]

    def test_expiring_soon_sends_reminder(self, db, store, owner, make_subscription, sent_emails):
        make_subscription(store, NOW + timedelta(days=3))

        result = svc.refresh_subscriptions(db, now=NOW)

        assert result.updated_subscriptions == []
        assert len(sent_emails) == 1
        assert sent_emails[0]["to"] == owner.email
        assert "expires in 3 days" in sent_emails[0]["subject"]
        assert "Corner Shop" in sent_emails[0]["body"]

    def test_no_reminder_outside_warning_window(self, db, store, make_subscription, sent_emails):
        make_subscription(store, NOW + timedelta(days=8))

        svc.refresh_subscriptions(db, now=NOW)

        assert sent_emails == []

    def test_suspension_notifies_owner(self, db, store, owner, make_subscription, sent_emails):
        make_subscription(store, NOW - timedelta(days=30))

        svc.refresh_subscriptions(db, now=NOW)

        assert [mail["to"] for mail in sent_emails] == [owner.email]
        assert "suspended" in sent_emails[0]["subject"]

    def test_reminder_sent_once_across_hourly_runs(self, db, store, make_subscription, sent_emails):
        sub = make_subscription(store, NOW + timedelta(days=3))

        for hour in range(24):
            svc.refresh_subscriptions(db, now=NOW + timedelta(hours=hour))

        db.refresh(sub)
        assert len(sent_emails) == 1
        assert sub.expiry_reminder_sent_at == NOW

    def test_renewal_rearms_reminder(self, db, store, make_subscription, sent_emails):
        sub = make_subscription(store, NOW + timedelta(days=3))
        svc.refresh_subscriptions(db, now=NOW)

        svc.renew_subscription(db, sub, now=NOW)
        assert sub.expiry_reminder_sent_at is None
        svc.refresh_subscriptions(db, now=sub.end_date - timedelta(days=2))

        assert len(sent_emails) == 2

    def test_lapsed_trial_becomes_past_due(self, db, store, make_subscription):
        sub = make_subscription(store, NOW - timedelta(days=2), status="trial")

        result = svc.refresh_subscriptions(db, now=NOW)

        db.refresh(sub)
        assert sub.status == "past_due"
        assert [(u.old_status, u.new_status) for u in result.updated_subscriptions] == [("trial", "past_due")]

    def test_trial_past_grace_expires_and_suspends(self, db, store, make_subscription):
        sub = make_subscription(store, NOW - timedelta(days=10), status="trial")

        svc.refresh_subscriptions(db, now=NOW)

        db.refresh(sub)
        db.refresh(store)
        assert sub.status == "expired"
        assert store.status == "suspended"

    def test_summary_ignores_trial_and_canceled(self, db, make_store, make_subscription):
        make_subscription(make_store("Paying"), NOW + timedelta(days=30))
        make_subscription(make_store("Trying"), NOW + timedelta(days=10), status="trial")
        make_subscription(make_store("Quit"), NOW - timedelta(days=90), status="canceled")

        summary = svc.status_summary(db)

        assert summary == {"total": 1, "active": 1, "past_due": 0, "expired": 0, "updated": 0}

    def test_store_without_owner_is_not_notified(self, db, make_store, make_subscription, sent_emails):
        make_subscription(make_store("Orphan"), NOW + timedelta(days=1))

        svc.refresh_subscriptions(db, now=NOW)

        assert sent_emails == []


class TestSubscriptionOverview:
    def test_overview_stats(self, db, make_store, make_subscription):
        make_subscription(make_store("Soon"), NOW + timedelta(days=2))
        make_subscription(make_store("Later"), NOW + timedelta(days=60))
        make_subscription(make_store("Grace"), NOW - timedelta(days=3), status="past_due")
        make_subscription(make_store("Late"), NOW - timedelta(days=30), status="past_due")
        make_subscription(make_store("Gone"), NOW - timedelta(days=30), status="expired")

        overview = svc.subscription_overview(db, now=NOW)

        stats = overview["stats"]
        assert stats["total"] == 5
        assert stats["active"] == 2
        assert stats["past_due"] == 2
        assert stats["expired"] == 1
        assert stats["expiring_soon"] == 1
        assert stats["grace_period"] == 1
        assert overview["expiring_soon"][0]["store_name"] == "Soon"
        assert overview["expiring_soon"][0]["days_until_expiry"] == 2
        assert overview["grace_period"][0]["store_name"] == "Grace"
        assert overview["grace_period"][0]["days_remaining"] == 4


    def test_grace_period_status_counted_once(self, db, make_store, make_subscription):
        make_subscription(make_store("Extended"), NOW - timedelta(days=1), status="grace_period")

        overview = svc.subscription_overview(db, now=NOW)

        assert overview["stats"]["grace_period"] == 1
        assert len(overview["grace_period"]) == 1
        assert overview["grace_period"][0]["days_remaining"] == 6


class TestSubscriptionTransitions:
    def test_create_subscription(self, db, store):
        data = SubscriptionCreate(
            store_id=store.id,
            plan="pro",
            status="active",
            start_date=NOW,
            end_date=NOW + timedelta(days=30),
        )
        sub = svc.create_subscription(db, data)

        assert sub.id is not None
        assert sub.plan == "pro"
        assert sub.grace_days == 7
        assert sub.auto_renew is False

    def test_create_rejects_second_live_subscription(self, db, store, make_subscription):
        make_subscription(store, NOW + timedelta(days=10), status="trial")
        data = SubscriptionCreate(store_id=store.id, plan="basic", status="active",
                                  start_date=NOW, end_date=NOW + timedelta(days=30))

        with pytest.raises(svc.SubscriptionConflict):
            svc.create_subscription(db, data)

    def test_create_allows_new_subscription_after_expiry(self, db, store, make_subscription):
        make_subscription(store, NOW - timedelta(days=60), status="expired")
        data = SubscriptionCreate(store_id=store.id, plan="basic", status="active",
                                  start_date=NOW, end_date=NOW + timedelta(days=30))

        assert svc.create_subscription(db, data).status == "active"

    def test_create_for_missing_store(self, db):
        data = SubscriptionCreate(store_id=999, plan="basic", start_date=NOW, end_date=NOW + timedelta(days=1))
        with pytest.raises(svc.StoreNotFound):
            svc.create_subscription(db, data)

    def test_create_rejects_inverted_dates(self):
        with pytest.raises(ValueError):
            SubscriptionCreate(store_id=1, plan="basic", start_date=NOW, end_date=NOW - timedelta(days=1))

    def test_update_partial_fields(self, db, store, make_subscription):
        sub = make_subscription(store, NOW + timedelta(days=10))

        updated = svc.update_subscription(db, sub, SubscriptionUpdate(auto_renew=True, grace_days=14))

        assert updated.auto_renew is True
        assert updated.grace_days == 14
        assert updated.status == "active"

    def test_update_rejects_end_before_start(self, db, store, make_subscription):
        sub = make_subscription(store, NOW + timedelta(days=10))

        with pytest.raises(svc.SubscriptionError):
            svc.update_subscription(db, sub, SubscriptionUpdate(end_date=sub.start_date - timedelta(days=1)))

    def test_update_reactivation_respects_live_uniqueness(self, db, store, make_subscription):
        make_subscription(store, NOW + timedelta(days=10))
        old = make_subscription(store, NOW - timedelta(days=60), status="expired")

        with pytest.raises(svc.SubscriptionConflict):
            svc.update_subscription(db, old, SubscriptionUpdate(status="active"))

    def test_renew_extends_from_end_date(self, db, store, make_subscription):
        end = NOW + timedelta(days=5)
        sub = make_subscription(store, end)

        renewed = svc.renew_subscription(db, sub, now=NOW)

        assert renewed.end_date == end + timedelta(days=30)
        assert renewed.next_billing_date == renewed.end_date
        assert renewed.status == "active"

    def test_renew_expired_restarts_from_now_and_reactivates_store(self, db, store, make_subscription):
        sub = make_subscription(store, NOW - timedelta(days=40))
        svc.refresh_subscriptions(db, now=NOW)
        db.refresh(store)
        assert store.status == "suspended"

        renewed = svc.renew_subscription(db, sub, now=NOW, period_days=365)

        db.refresh(store)
        assert renewed.status == "active"
        assert renewed.end_date == NOW + timedelta(days=365)
        assert renewed.grace_period_end is None
        assert store.status == "active"
        assert store.suspension_reason is None

    def test_renew_keeps_manual_suspension(self, db, make_store, make_subscription):
        shop = make_store("Flagged", status="suspended")
        shop.suspension_reason = "Fraud review"
        db.commit()
        sub = make_subscription(shop, NOW - timedelta(days=1), status="past_due")

        svc.renew_subscription(db, sub, now=NOW)

        db.refresh(shop)
        assert shop.status == "suspended"
        assert shop.suspension_reason == "Fraud review"

    def test_renew_canceled_is_rejected(self, db, store, make_subscription):
        sub = make_subscription(store, NOW + timedelta(days=5), status="canceled")
        with pytest.raises(svc.InvalidTransition):
            svc.renew_subscription(db, sub, now=NOW)

    def test_cancel(self, db, store, make_subscription):
        sub = make_subscription(store, NOW + timedelta(days=5), auto_renew=True, next_billing_date=NOW + timedelta(days=5))

        canceled = svc.cancel_subscription(db, sub, now=NOW)

        assert canceled.status == "canceled"
        assert canceled.auto_renew is False
        assert canceled.next_billing_date is None
        with pytest.raises(svc.InvalidTransition):
            svc.cancel_subscription(db, canceled, now=NOW)
