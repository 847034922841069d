"""Spam filtering, admin-chat moderation and a small chat message store for group chats."""

__version__ = "0.1.0"

__all__ = ["admin", "bot", "callbacks", "chatstore", "events", "telegram"]