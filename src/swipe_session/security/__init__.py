"""Security layer for swipe-session.

Holds the authentication stack (security.auth) and shared keyring helpers.
"""
