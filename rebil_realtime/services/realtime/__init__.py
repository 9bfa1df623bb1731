"""Realtime subscription management."""
