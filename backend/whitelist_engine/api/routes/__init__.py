# API routes
from whitelist_engine.api.routes import health
from whitelist_engine.api.routes import whitelist
from whitelist_engine.api.routes import admin_grants
from whitelist_engine.api.routes import admin_role_configs
from whitelist_engine.api.routes import admin_sync

__all__ = ["health", "whitelist", "admin_grants", "admin_role_configs", "admin_sync"]
