"""
Entitlement Resolver

Read-side answer to "can principal P access asset A":
owner, admin, or holder of a paid purchase. Every check re-reads the store.
"""

import logging
from typing import Dict, Any, List

from .config import ITEM_TYPES, ROLE_ADMIN
from .errors import ValidationError, ForbiddenError, AssetNotFound, NotFoundError

logger = logging.getLogger(__name__)


class EntitlementResolver:
    """Resolves access to songs and content."""

    def __init__(self, store):
        self.store = store

    @staticmethod
    def _is_admin(principal: Dict[str, Any]) -> bool:
        return str(principal.get("role") or "").lower() == ROLE_ADMIN

    async def _resolve_asset(self, item_type: str, item_id: str) -> Dict[str, Any]:
        item_type = str(item_type or "").strip().lower()
        if item_type not in ITEM_TYPES:
            raise ValidationError(reason="INVALID_ITEM_TYPE", item_type=item_type)

        asset = await self.store.find_asset(item_type, item_id)
        if not asset:
            raise AssetNotFound(item_type=item_type, item_id=item_id)
        return asset

    async def _holds(self, principal_id: str, asset: Dict[str, Any]) -> bool:
        if asset["owner_id"] == principal_id:
            return True
        purchase = await self.store.find_paid_purchase(principal_id, asset["item_type"], asset["id"])
        return purchase is not None

    async def can_access(self, principal: Dict[str, Any], item_type: str, item_id: str) -> bool:
        asset = await self._resolve_asset(item_type, item_id)
        if self._is_admin(principal):
            return True
        return await self._holds(str(principal.get("id") or ""), asset)

    async def get_download_link(
        self,
        requester: Dict[str, Any],
        user_id: str,
        item_type: str,
        item_id: str
    ) -> str:
        """
        Download URL for an asset the given user is entitled to.

        Only the user themself (or an admin) may ask. The check is made for
        user_id, not for the requester.
        """
        if requester.get("id") != user_id and not self._is_admin(requester):
            raise ForbiddenError()

        asset = await self._resolve_asset(item_type, item_id)

        target = await self.store.find_account_by_id(user_id)
        allowed = self._is_admin(target or {}) or await self._holds(user_id, asset)
        if not allowed:
            raise ForbiddenError(reason="PURCHASE_REQUIRED", item_type=asset["item_type"], item_id=asset["id"])

        if not asset["download_url"]:
            raise NotFoundError(reason="DOWNLOAD_UNAVAILABLE", item_type=asset["item_type"], item_id=asset["id"])

        logger.info(f"Download granted to {user_id} for {asset['item_type']}:{asset['id']}")
        return asset["download_url"]

    async def list_purchases(self, requester: Dict[str, Any], user_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        """Paid purchases for a user, newest first."""
        if requester.get("id") != user_id and not self._is_admin(requester):
            raise ForbiddenError()
        return await self.store.list_paid_purchases(user_id, limit)
