"""
Health check endpoint.

Reports database reachability and whether the Discord gateway is wired;
no authentication required.
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.orm import Session

from whitelist_engine.database.session import get_db_session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request, db_session: Session = Depends(get_db_session)):
    database = "ok"
    try:
        db_session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Health check database probe failed", extra={"error": str(e)})
        database = "unavailable"

    return {
        "status": "ok" if database == "ok" else "degraded",
        "database": database,
        "discord_gateway": getattr(request.app.state, "guild_gateway", None) is not None,
    }
