"""Telemetry for swipe-session (operational logging)."""
