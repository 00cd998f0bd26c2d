"""Shared utilities for swipe-session."""
