"""Moderation audit trail."""
