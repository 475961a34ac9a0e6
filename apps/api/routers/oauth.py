"""
OAuth redirect endpoints: send the browser to the provider and receive it back.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse

from routers.dependencies import get_connection_service
from services.connections import ConnectionService

router = APIRouter()


@router.get("/{platform}/authorize")
async def authorize(
    platform: str,
    user_id: Optional[str] = Query(default=None),
    shop: Optional[str] = Query(default=None),
    service: ConnectionService = Depends(get_connection_service),
):
    """Redirect to the platform's consent screen. Errors are returned as JSON."""
    url = await service.authorize(platform, user_id, shop=shop)
    return RedirectResponse(url=url, status_code=302)


@router.get("/{platform}/callback")
async def callback(
    platform: str,
    code: Optional[str] = Query(default=None),
    state: Optional[str] = Query(default=None),
    error: Optional[str] = Query(default=None),
    shop: Optional[str] = Query(default=None),
    service: ConnectionService = Depends(get_connection_service),
):
    """
    Provider redirect target. Always answers with a redirect to the dashboard,
    tagged ``connected=<platform>`` or ``error=<code>``.

    ``shop`` is accepted for Shopify but the shop recorded at authorize time wins.
    """
    result = await service.handle_callback(platform, code=code, state=state, error=error)
    return RedirectResponse(url=result.redirect_url, status_code=302)
