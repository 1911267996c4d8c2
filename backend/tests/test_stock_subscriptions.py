"""
Tests for the stock-notification subscription registry.
"""

import uuid
from datetime import datetime, timedelta

import pytest

from core.errors import NotFoundError, ValidationError
from notifications import subscriptions


class TestNormalizeEmail:
    def test_trims_and_lowercases(self):
        assert subscriptions.normalize_email("  Ana@Example.COM ") == "ana@example.com"

    @pytest.mark.parametrize("email", ["", None, "no-at-sign", "a@b", "two words@x.com"])
    def test_rejects_malformed(self, email):
        with pytest.raises(ValidationError):
            subscriptions.normalize_email(email)


@pytest.mark.asyncio
class TestSubscribe:
    async def test_duplicate_reports_already_subscribed(self, test_db, seeded_db):
        white = seeded_db["white"]
        first, created = await subscriptions.subscribe(test_db, white.variant_id, "a@x.com", 2, "Red")
        second, created_again = await subscriptions.subscribe(test_db, white.variant_id, "a@x.com", 2, "Red")

        assert created is True
        assert created_again is False
        assert second.notification_id == first.notification_id
        assert len(await subscriptions.list_subscriptions(test_db, white.variant_id)) == 1

    async def test_duplicate_key_is_case_insensitive(self, test_db, seeded_db):
        white = seeded_db["white"]
        await subscriptions.subscribe(test_db, white.variant_id, "a@x.com")
        _, created = await subscriptions.subscribe(test_db, white.variant_id, "A@X.com")
        assert created is False

    async def test_repeat_does_not_overwrite_quantity(self, test_db, seeded_db):
        white = seeded_db["white"]
        await subscriptions.subscribe(test_db, white.variant_id, "a@x.com", 2)
        existing, _ = await subscriptions.subscribe(test_db, white.variant_id, "a@x.com", 5)
        assert existing.variant_qty == 2

    async def test_same_email_on_another_variant_is_new(self, test_db, seeded_db):
        await subscriptions.subscribe(test_db, seeded_db["white"].variant_id, "a@x.com")
        _, created = await subscriptions.subscribe(test_db, seeded_db["black"].variant_id, "a@x.com")
        assert created is True

    async def test_label_defaults_to_variant_label(self, test_db, seeded_db):
        sub, _ = await subscriptions.subscribe(test_db, seeded_db["white"].variant_id, "a@x.com")
        assert sub.variant_label == "Blanco"
        assert sub.variant_qty == 1
        assert sub.notified is False
        assert sub.notified_at is None

    async def test_unknown_variant(self, test_db):
        with pytest.raises(NotFoundError):
            await subscriptions.subscribe(test_db, uuid.uuid4(), "a@x.com")

    async def test_quantity_must_be_positive(self, test_db, seeded_db):
        with pytest.raises(ValidationError):
            await subscriptions.subscribe(test_db, seeded_db["white"].variant_id, "a@x.com", 0)


@pytest.mark.asyncio
class TestPendingAndNotified:
    async def test_pending_oldest_first(self, test_db, seeded_db):
        white = seeded_db["white"]
        await subscriptions.subscribe(test_db, white.variant_id, "late@x.com")
        early, _ = await subscriptions.subscribe(test_db, white.variant_id, "early@x.com")
        early.created_at = datetime.utcnow() - timedelta(days=1)
        await test_db.commit()

        pending = await subscriptions.list_pending(test_db, white.variant_id)
        assert [s.email for s in pending] == ["early@x.com", "late@x.com"]

    async def test_mark_notified_is_terminal(self, test_db, seeded_db):
        white = seeded_db["white"]
        sub, _ = await subscriptions.subscribe(test_db, white.variant_id, "a@x.com")

        assert await subscriptions.mark_notified(test_db, sub.notification_id) is True
        await test_db.refresh(sub)
        first_stamp = sub.notified_at
        assert sub.notified is True
        assert first_stamp is not None

        assert await subscriptions.mark_notified(test_db, sub.notification_id) is False
        await test_db.refresh(sub)
        assert sub.notified_at == first_stamp
        assert await subscriptions.list_pending(test_db, white.variant_id) == []

    async def test_only_one_claim_wins_for_a_stale_reader(self, test_db, seeded_db):
        white = seeded_db["white"]
        sub, _ = await subscriptions.subscribe(test_db, white.variant_id, "a@x.com")

        # Both readers saw the row as pending before either marked it.
        pending = await subscriptions.list_pending(test_db, white.variant_id)
        assert [s.notification_id for s in pending] == [sub.notification_id]

        claims = [
            await subscriptions.mark_notified(test_db, pending[0].notification_id),
            await subscriptions.mark_notified(test_db, sub.notification_id),
        ]
        assert claims == [True, False]

    async def test_mark_missing_returns_false(self, test_db):
        assert await subscriptions.mark_notified(test_db, uuid.uuid4()) is False

    async def test_notified_subscription_blocks_resubscribe(self, test_db, seeded_db):
        white = seeded_db["white"]
        sub, _ = await subscriptions.subscribe(test_db, white.variant_id, "a@x.com")
        await subscriptions.mark_notified(test_db, sub.notification_id)
        await test_db.commit()

        existing, created = await subscriptions.subscribe(test_db, white.variant_id, "a@x.com")
        assert created is False
        assert existing.notified is True

    async def test_variants_with_pending_only_lists_available(self, test_db, seeded_db):
        await subscriptions.subscribe(test_db, seeded_db["white"].variant_id, "a@x.com")
        await subscriptions.subscribe(test_db, seeded_db["black"].variant_id, "b@x.com")

        assert await subscriptions.variants_with_pending(test_db) == [seeded_db["black"].variant_id]
