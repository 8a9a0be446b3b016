"""Threads, messages, the thread access validator and the messaging service."""
