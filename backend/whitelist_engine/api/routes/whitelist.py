"""
Game-server whitelist export routes.

Served as text/plain for the Squad server's remote admin list fetcher.
"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from whitelist_engine.api.dependencies.services import get_whitelist_exporter
from whitelist_engine.services.whitelist_export import WhitelistExporter

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/whitelist", tags=["whitelist"])

_TEXT_HEADERS = {"Cache-Control": "no-cache"}


@router.get("/combined", response_class=PlainTextResponse)
async def combined_whitelist(exporter: WhitelistExporter = Depends(get_whitelist_exporter)):
    """Group definitions plus staff, member and general sections."""
    return PlainTextResponse(exporter.render_combined(), headers=_TEXT_HEADERS)


@router.get("/staff", response_class=PlainTextResponse)
async def staff_whitelist(exporter: WhitelistExporter = Depends(get_whitelist_exporter)):
    return PlainTextResponse(exporter.render_staff(), headers=_TEXT_HEADERS)


@router.get("/members", response_class=PlainTextResponse)
async def members_whitelist(exporter: WhitelistExporter = Depends(get_whitelist_exporter)):
    return PlainTextResponse(exporter.render_members(), headers=_TEXT_HEADERS)


@router.get("/general", response_class=PlainTextResponse)
async def general_whitelist(exporter: WhitelistExporter = Depends(get_whitelist_exporter)):
    return PlainTextResponse(exporter.render_general(), headers=_TEXT_HEADERS)
