"""
Whitelist entitlement engine.

Grants and revokes game-server whitelist access derived from Discord role
membership, manual admin action, donations and imports, gated by account-link
confidence.
"""

__version__ = "0.1.0"
