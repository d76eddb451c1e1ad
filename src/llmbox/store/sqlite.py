"""SQLite-backed persistence for users, usage, email logs and subscribers.

Accepts a ``sqlite3.Connection`` opened by ``init_db``, uses parameterized
queries exclusively, and commits synchronously after writes.  Monetary
columns hold decimal text so no precision is lost to floating point.

The store is synchronous; async callers run it with ``asyncio.to_thread``.
A lock serializes access to the shared connection.
"""

from __future__ import annotations

import sqlite3
import threading
import uuid
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path

from llmbox.domain.models import NewsletterSubscriber, UsageLogEntry, User
from llmbox.domain.types import TIER_COST_LIMITS, Tier


def _now() -> str:
    return datetime.now(tz=UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def init_db(db_path: Path | str) -> sqlite3.Connection:
    """Create and initialize the database with WAL mode and indexes.

    Args:
        db_path: Path to the SQLite database file, or ``":memory:"``.

    Returns:
        An open sqlite3.Connection usable from worker threads.
    """
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")

    conn.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            email TEXT NOT NULL UNIQUE,
            tier TEXT NOT NULL DEFAULT 'free',
            cost_used_usd TEXT NOT NULL DEFAULT '0',
            cost_limit_usd TEXT NOT NULL,
            subscription_status TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS usage_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL REFERENCES users (id),
            email TEXT NOT NULL,
            message_id TEXT NOT NULL,
            prompt_tokens INTEGER NOT NULL,
            completion_tokens INTEGER NOT NULL,
            total_tokens INTEGER NOT NULL,
            model TEXT NOT NULL,
            cost_usd TEXT NOT NULL,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS email_logs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT REFERENCES users (id),
            direction TEXT NOT NULL,
            message_id TEXT,
            in_reply_to TEXT,
            references_header TEXT,
            from_email TEXT NOT NULL,
            to_email TEXT NOT NULL,
            subject TEXT NOT NULL,
            body TEXT NOT NULL,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS newsletter_subscribers (
            id TEXT PRIMARY KEY,
            email TEXT NOT NULL UNIQUE,
            preferences TEXT NOT NULL DEFAULT '',
            active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS newsletter_feedback (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            subscriber_id TEXT NOT NULL REFERENCES newsletter_subscribers (id),
            content TEXT NOT NULL,
            created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
        )
    """)

    conn.execute("CREATE INDEX IF NOT EXISTS idx_usage_user ON usage_logs (user_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_email_logs_user ON email_logs (user_id)")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_feedback_subscriber ON newsletter_feedback (subscriber_id)"
    )

    conn.commit()
    return conn


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        tier=Tier(row["tier"]),
        cost_used_usd=Decimal(row["cost_used_usd"]),
        cost_limit_usd=Decimal(row["cost_limit_usd"]),
        subscription_status=row["subscription_status"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_subscriber(row: sqlite3.Row) -> NewsletterSubscriber:
    return NewsletterSubscriber(
        id=row["id"],
        email=row["email"],
        preferences=row["preferences"],
        active=bool(row["active"]),
        created_at=row["created_at"],
    )


class UsageStore:
    """Read and write the records the pipeline depends on.

    Args:
        conn: Connection returned by ``init_db``.
        free_tier_limit: Spend ceiling assigned to newly created users.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        free_tier_limit: Decimal = TIER_COST_LIMITS[Tier.FREE],
    ) -> None:
        self._conn = conn
        self._free_tier_limit = free_tier_limit
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def get_or_create_user(self, email: str) -> User:
        """Return the user for *email*, creating a free-tier user if unseen."""
        normalized = email.strip().lower()
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM users WHERE email = ?", (normalized,)
            ).fetchone()
            if row is None:
                now = _now()
                with self._conn:
                    self._conn.execute(
                        """
                        INSERT OR IGNORE INTO users (
                            id, email, tier, cost_used_usd, cost_limit_usd,
                            subscription_status, created_at, updated_at
                        ) VALUES (?, ?, ?, ?, ?, NULL, ?, ?)
                        """,
                        (
                            str(uuid.uuid4()),
                            normalized,
                            Tier.FREE.value,
                            "0",
                            str(self._free_tier_limit),
                            now,
                            now,
                        ),
                    )
                row = self._conn.execute(
                    "SELECT * FROM users WHERE email = ?", (normalized,)
                ).fetchone()
        return _row_to_user(row)

    def get_user_by_id(self, user_id: str) -> User | None:
        """Return the user with *user_id*, or ``None``."""
        with self._lock:
            row = self._conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return _row_to_user(row) if row else None

    def update_user_cost_usage(self, user_id: str, delta: Decimal) -> User:
        """Add *delta* to the user's running spend in one transaction.

        Raises:
            KeyError: If no user has *user_id*.
        """
        with self._lock, self._conn:
            row = self._conn.execute(
                "SELECT cost_used_usd FROM users WHERE id = ?", (user_id,)
            ).fetchone()
            if row is None:
                raise KeyError(user_id)
            new_total = Decimal(row["cost_used_usd"]) + delta
            self._conn.execute(
                "UPDATE users SET cost_used_usd = ?, updated_at = ? WHERE id = ?",
                (str(new_total), _now(), user_id),
            )
            updated = self._conn.execute(
                "SELECT * FROM users WHERE id = ?", (user_id,)
            ).fetchone()
        return _row_to_user(updated)

    def update_user_tier(
        self,
        user_id: str,
        tier: Tier,
        subscription_status: str | None = None,
    ) -> User:
        """Move a user to *tier*, resetting the ceiling to that tier's limit.

        Raises:
            KeyError: If no user has *user_id*.
        """
        limit = self._free_tier_limit if tier == Tier.FREE else TIER_COST_LIMITS[tier]
        with self._lock, self._conn:
            cursor = self._conn.execute(
                """
                UPDATE users
                SET tier = ?, cost_limit_usd = ?, subscription_status = ?, updated_at = ?
                WHERE id = ?
                """,
                (tier.value, str(limit), subscription_status, _now(), user_id),
            )
            if cursor.rowcount == 0:
                raise KeyError(user_id)
            row = self._conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return _row_to_user(row)

    def reset_user_cost_usage(self, user_id: str) -> User:
        """Zero the running spend at the start of a billing period.

        Raises:
            KeyError: If no user has *user_id*.
        """
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "UPDATE users SET cost_used_usd = '0', updated_at = ? WHERE id = ?",
                (_now(), user_id),
            )
            if cursor.rowcount == 0:
                raise KeyError(user_id)
            row = self._conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return _row_to_user(row)

    # ------------------------------------------------------------------
    # Usage and email logs
    # ------------------------------------------------------------------

    def insert_usage_log(self, entry: UsageLogEntry) -> int:
        """Append a usage row and return its ID."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                """
                INSERT INTO usage_logs (
                    user_id, email, message_id, prompt_tokens, completion_tokens,
                    total_tokens, model, cost_usd
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.user_id,
                    entry.email,
                    entry.message_id,
                    entry.prompt_tokens,
                    entry.completion_tokens,
                    entry.total_tokens,
                    entry.model,
                    str(entry.cost_usd),
                ),
            )
        return cursor.lastrowid or 0

    def list_usage_logs(self, user_id: str) -> list[UsageLogEntry]:
        """Return a user's usage rows, oldest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM usage_logs WHERE user_id = ? ORDER BY id ASC", (user_id,)
            ).fetchall()
        return [
            UsageLogEntry(
                user_id=row["user_id"],
                email=row["email"],
                message_id=row["message_id"],
                prompt_tokens=row["prompt_tokens"],
                completion_tokens=row["completion_tokens"],
                total_tokens=row["total_tokens"],
                model=row["model"],
                cost_usd=Decimal(row["cost_usd"]),
            )
            for row in rows
        ]

    def save_email(
        self,
        *,
        direction: str,
        from_email: str,
        to_email: str,
        subject: str,
        body: str,
        user_id: str | None = None,
        message_id: str | None = None,
        in_reply_to: str | None = None,
        references: tuple[str, ...] = (),
    ) -> int:
        """Record an inbound query or outbound reply and return its row ID."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                """
                INSERT INTO email_logs (
                    user_id, direction, message_id, in_reply_to, references_header,
                    from_email, to_email, subject, body
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    direction,
                    message_id,
                    in_reply_to,
                    " ".join(references),
                    from_email,
                    to_email,
                    subject,
                    body,
                ),
            )
        return cursor.lastrowid or 0

    def count_emails(self, direction: str | None = None) -> int:
        """Return the number of logged emails, optionally for one direction."""
        with self._lock:
            if direction is None:
                row = self._conn.execute("SELECT COUNT(*) FROM email_logs").fetchone()
            else:
                row = self._conn.execute(
                    "SELECT COUNT(*) FROM email_logs WHERE direction = ?", (direction,)
                ).fetchone()
        return int(row[0])

    # ------------------------------------------------------------------
    # Newsletter subscribers
    # ------------------------------------------------------------------

    def add_newsletter_subscriber(self, email: str, preferences: str) -> NewsletterSubscriber:
        """Subscribe *email*, or reactivate and update an existing subscriber."""
        normalized = email.strip().lower()
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT INTO newsletter_subscribers (id, email, preferences, active)
                VALUES (?, ?, ?, 1)
                ON CONFLICT (email) DO UPDATE SET preferences = excluded.preferences, active = 1
                """,
                (str(uuid.uuid4()), normalized, preferences),
            )
            row = self._conn.execute(
                "SELECT * FROM newsletter_subscribers WHERE email = ?", (normalized,)
            ).fetchone()
        return _row_to_subscriber(row)

    def list_active_newsletter_subscribers(self) -> list[NewsletterSubscriber]:
        """Return every active subscriber in signup order."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM newsletter_subscribers WHERE active = 1 ORDER BY created_at, email"
            ).fetchall()
        return [_row_to_subscriber(row) for row in rows]

    def get_newsletter_subscriber(self, email: str) -> NewsletterSubscriber | None:
        """Look up a subscriber by address (case-insensitive)."""
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM newsletter_subscribers WHERE email = ?",
                (email.strip().lower(),),
            ).fetchone()
        return _row_to_subscriber(row) if row else None

    def get_newsletter_subscriber_by_id(self, subscriber_id: str) -> NewsletterSubscriber | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM newsletter_subscribers WHERE id = ?", (subscriber_id,)
            ).fetchone()
        return _row_to_subscriber(row) if row else None

    def add_newsletter_feedback(self, subscriber_id: str, content: str) -> int:
        """Store one piece of reply feedback and return its row id."""
        with self._lock, self._conn:
            cursor = self._conn.execute(
                "INSERT INTO newsletter_feedback (subscriber_id, content) VALUES (?, ?)",
                (subscriber_id, content),
            )
        return cursor.lastrowid or 0

    def list_newsletter_feedback(self, subscriber_id: str) -> list[str]:
        """Return a subscriber's feedback, oldest first."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT content FROM newsletter_feedback WHERE subscriber_id = ? ORDER BY id",
                (subscriber_id,),
            ).fetchall()
        return [row["content"] for row in rows]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True when the database answers ``SELECT 1``."""
        with self._lock:
            return self._conn.execute("SELECT 1").fetchone()[0] == 1

    def close(self) -> None:
        """Close the underlying connection."""
        with self._lock:
            self._conn.close()
