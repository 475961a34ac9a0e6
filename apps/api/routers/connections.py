"""
Connection management endpoints: list, disconnect, refresh, revoke and content fetch.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from routers.dependencies import get_connection_service
from services.connections import ConnectionService
from services.connectors.registry import platform_catalogue

router = APIRouter()


class ConnectionActionRequest(BaseModel):
    user_id: Optional[str] = None


@router.get("/platforms")
async def list_platforms(
    user_id: Optional[str] = Query(default=None),
    service: ConnectionService = Depends(get_connection_service),
):
    """Supported platforms, whether each is configured and (with user_id) connected."""
    connected = await service.connected_platforms(user_id) if user_id else {}
    platforms = []
    for entry in platform_catalogue(service.settings):
        status = connected.get(entry["id"])
        platforms.append({**entry, "connected": status is not None, "token_status": status})
    return {"success": True, "data": {"platforms": platforms}}


@router.get("/connections")
async def list_connections(
    user_id: Optional[str] = Query(default=None),
    service: ConnectionService = Depends(get_connection_service),
):
    records = await service.list_connections(user_id)
    return {"success": True, "data": [record.to_public_dict() for record in records]}


@router.delete("/connections/{platform}")
async def disconnect(
    platform: str,
    request: ConnectionActionRequest,
    service: ConnectionService = Depends(get_connection_service),
):
    await service.disconnect(platform, request.user_id)
    return {"success": True, "message": f"{platform} disconnected"}


@router.post("/connections/{platform}/refresh")
async def refresh(
    platform: str,
    request: ConnectionActionRequest,
    service: ConnectionService = Depends(get_connection_service),
):
    record = await service.refresh(platform, request.user_id)
    return {
        "success": True,
        "message": f"{platform} token refreshed",
        "data": record.to_public_dict(),
    }


@router.post("/connections/{platform}/revoke")
async def revoke(
    platform: str,
    request: ConnectionActionRequest,
    service: ConnectionService = Depends(get_connection_service),
):
    record = await service.revoke(platform, request.user_id)
    return {
        "success": True,
        "message": f"{platform} token revoked",
        "data": record.to_public_dict(),
    }


@router.get("/connections/{platform}/content/{content_type}")
async def fetch_content(
    platform: str,
    content_type: str,
    user_id: Optional[str] = Query(default=None),
    service: ConnectionService = Depends(get_connection_service),
):
    data = await service.fetch_content(platform, user_id, content_type)
    return {"success": True, "data": data}
