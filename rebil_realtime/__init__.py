"""Realtime notification service for the REBIL car rental marketplace."""
