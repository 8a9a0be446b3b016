"""Caller identity and role-based permission tables."""
