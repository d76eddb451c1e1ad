"""Tests for the SQLite usage store."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest

from llmbox.domain.models import UsageLogEntry
from llmbox.domain.types import Tier
from llmbox.store.sqlite import UsageStore, init_db


class TestInitDb:
    """Schema creation and pragmas."""

    def test_creates_tables(self) -> None:
        conn = init_db(":memory:")

        names = {
            row["name"]
            for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
        }

        assert {
            "users",
            "usage_logs",
            "email_logs",
            "newsletter_subscribers",
            "newsletter_feedback",
        } <= names
        conn.close()

    def test_file_database_uses_wal(self, tmp_path: Path) -> None:
        conn = init_db(tmp_path / "nested" / "llmbox.db")

        mode = conn.execute("PRAGMA journal_mode").fetchone()[0]

        assert mode == "wal"
        assert (tmp_path / "nested" / "llmbox.db").exists()
        conn.close()

    def test_idempotent(self, tmp_path: Path) -> None:
        path = tmp_path / "llmbox.db"
        init_db(path).close()
        conn = init_db(path)
        conn.close()


class TestUsers:
    """Lazy creation and spend updates."""

    def test_new_user_is_free_tier(self, store: UsageStore) -> None:
        user = store.get_or_create_user("Ada@Example.com")

        assert user.email == "ada@example.com"
        assert user.tier == Tier.FREE
        assert user.cost_used_usd == Decimal("0")
        assert user.cost_limit_usd == Decimal("1.00")
        assert user.subscription_status is None

    def test_same_address_returns_same_user(self, store: UsageStore) -> None:
        first = store.get_or_create_user("ada@example.com")
        second = store.get_or_create_user(" ADA@example.com ")

        assert first.id == second.id

    def test_get_user_by_id(self, store: UsageStore) -> None:
        user = store.get_or_create_user("ada@example.com")

        assert store.get_user_by_id(user.id) == user
        assert store.get_user_by_id("missing") is None

    def test_cost_increments_keep_decimal_precision(self, store: UsageStore) -> None:
        user = store.get_or_create_user("ada@example.com")

        store.update_user_cost_usage(user.id, Decimal("0.000001"))
        updated = store.update_user_cost_usage(user.id, Decimal("0.000002"))

        assert updated.cost_used_usd == Decimal("0.000003")

    def test_update_unknown_user_raises(self, store: UsageStore) -> None:
        with pytest.raises(KeyError):
            store.update_user_cost_usage("missing", Decimal("1"))

    def test_tier_change_sets_limit(self, store: UsageStore) -> None:
        user = store.get_or_create_user("ada@example.com")

        upgraded = store.update_user_tier(user.id, Tier.PRO, subscription_status="active")

        assert upgraded.tier == Tier.PRO
        assert upgraded.cost_limit_usd == Decimal("16.00")
        assert upgraded.subscription_status == "active"

    def test_reset_cost_usage(self, store: UsageStore) -> None:
        user = store.get_or_create_user("ada@example.com")
        store.update_user_cost_usage(user.id, Decimal("0.5"))

        reset = store.reset_user_cost_usage(user.id)

        assert reset.cost_used_usd == Decimal("0")

    def test_custom_free_limit(self) -> None:
        custom = UsageStore(init_db(":memory:"), free_tier_limit=Decimal("2.50"))

        assert custom.get_or_create_user("a@b.com").cost_limit_usd == Decimal("2.50")
        custom.close()


class TestLogs:
    """Usage and email log rows."""

    def test_usage_logs_in_insert_order(self, store: UsageStore) -> None:
        user = store.get_or_create_user("ada@example.com")
        for index in range(2):
            store.insert_usage_log(
                UsageLogEntry(
                    user_id=user.id,
                    email=user.email,
                    message_id=f"<{index}@x>",
                    prompt_tokens=10,
                    completion_tokens=5,
                    total_tokens=15,
                    model="claude-haiku-4-5",
                    cost_usd=Decimal("0.000035"),
                )
            )

        logs = store.list_usage_logs(user.id)

        assert [log.message_id for log in logs] == ["<0@x>", "<1@x>"]
        assert logs[0].cost_usd == Decimal("0.000035")

    def test_save_and_count_emails(self, store: UsageStore) -> None:
        store.save_email(
            direction="inbound",
            from_email="ada@example.com",
            to_email="assistant@llmbox.pro",
            subject="Hi",
            body="Hello",
            message_id="<1@x>",
            references=("<0@x>",),
        )
        store.save_email(
            direction="outbound",
            from_email="assistant@llmbox.pro",
            to_email="ada@example.com",
            subject="Re: Hi",
            body="Hello back",
            in_reply_to="<1@x>",
        )

        assert store.count_emails() == 2
        assert store.count_emails("inbound") == 1
        assert store.count_emails("outbound") == 1


class TestNewsletterSubscribers:
    """Subscriber upsert and listing."""

    def test_add_and_list(self, store: UsageStore) -> None:
        store.add_newsletter_subscriber("Ada@Example.com", "AI news")

        subscribers = store.list_active_newsletter_subscribers()

        assert len(subscribers) == 1
        assert subscribers[0].email == "ada@example.com"
        assert subscribers[0].preferences == "AI news"
        assert subscribers[0].active is True

    def test_resubscribe_updates_preferences(self, store: UsageStore) -> None:
        first = store.add_newsletter_subscriber("ada@example.com", "AI news")
        second = store.add_newsletter_subscriber("ada@example.com", "Chess")

        assert first.id == second.id
        assert second.preferences == "Chess"
        assert len(store.list_active_newsletter_subscribers()) == 1

    def test_lookup_by_email_and_id(self, store: UsageStore) -> None:
        subscriber = store.add_newsletter_subscriber("ada@example.com", "AI news")

        assert store.get_newsletter_subscriber("ADA@example.com") == subscriber
        assert store.get_newsletter_subscriber_by_id(subscriber.id) == subscriber
        assert store.get_newsletter_subscriber("bob@example.com") is None
        assert store.get_newsletter_subscriber_by_id("missing") is None

    def test_feedback_listed_oldest_first(self, store: UsageStore) -> None:
        subscriber = store.add_newsletter_subscriber("ada@example.com", "AI news")

        store.add_newsletter_feedback(subscriber.id, "More robotics")
        store.add_newsletter_feedback(subscriber.id, "Shorter")

        assert store.list_newsletter_feedback(subscriber.id) == ["More robotics", "Shorter"]


def test_ping(store: UsageStore) -> None:
    assert store.ping() is True
