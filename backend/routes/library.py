"""
Library routes - purchased items, download gate and access checks
"""
from fastapi import APIRouter, Depends, Query

from entitlements.models import (
    PurchaseListResponse,
    AccessResponse,
    DownloadResponse,
    to_purchase_view,
)
from routes.deps import get_resolver
from utils.auth import get_current_user

library_router = APIRouter(tags=["Library"])


@library_router.get("/users/{user_id}/purchases", response_model=PurchaseListResponse)
async def list_purchases(
    user_id: str,
    limit: int = Query(100, ge=1, le=500),
    user: dict = Depends(get_current_user),
    resolver=Depends(get_resolver)
):
    purchases = await resolver.list_purchases(user, user_id, limit)
    items = [to_purchase_view(p) for p in purchases]
    return PurchaseListResponse(items=items, count=len(items))


@library_router.get("/users/{user_id}/download/{item_type}/{item_id}", response_model=DownloadResponse)
async def get_download_link(
    user_id: str,
    item_type: str,
    item_id: str,
    user: dict = Depends(get_current_user),
    resolver=Depends(get_resolver)
):
    download_url = await resolver.get_download_link(user, user_id, item_type, item_id)
    return DownloadResponse(message="Download link ready", download_url=download_url)


@library_router.get("/access/{item_type}/{item_id}", response_model=AccessResponse)
async def check_access(
    item_type: str,
    item_id: str,
    user: dict = Depends(get_current_user),
    resolver=Depends(get_resolver)
):
    allowed = await resolver.can_access(user, item_type, item_id)
    return AccessResponse(item_type=item_type.lower(), item_id=item_id, allowed=allowed)
