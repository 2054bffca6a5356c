"""
Business logic services.

Modules are imported directly (e.g. whitelist_engine.services.role_sync);
the entitlement layer depends on audit_logger, so nothing is re-exported
here.
"""
