"""SQLite persistence for users, usage logs, email logs and subscribers."""

from llmbox.store.sqlite import UsageStore, init_db

__all__ = ["UsageStore", "init_db"]
