"""Messaging Guard: access control, content guard and moderation for workspace messaging."""

__version__ = "0.1.0"
