"""
Supabase access for profiles and assets.

All mutations go through the service role client (RLS bypass); the worker
scopes every query to the authenticated user itself.

Tables touched:
  profiles (id, email, credits, role, created_at)
  assets   (id, user_id, type, url, prompt, aspect_ratio, created_at)
"""

import logging
from typing import Optional

from supabase import Client, create_client

from . import config
from .errors import PersistenceError
from .models import AssetType, SessionUser, UserProfile

logger = logging.getLogger(__name__)


def _profile_from_row(row: dict) -> UserProfile:
    return UserProfile(
        id=row["id"],
        email=row.get("email") or "",
        credits=row.get("credits") or 0,
        role=row.get("role") or "user",
    )


class SupabaseStore:
    """Relational store used by the ledger, the asset repository and auth."""

    def __init__(self, client: Optional[Client] = None):
        self._client = client

    @property
    def client(self) -> Client:
        """Lazy-init Supabase client using service role key."""
        if self._client is None:
            if not config.SUPABASE_URL or not config.SUPABASE_SERVICE_ROLE_KEY:
                raise PersistenceError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
            self._client = create_client(config.SUPABASE_URL, config.SUPABASE_SERVICE_ROLE_KEY)
        return self._client

    # ── Auth ─────────────────────────────────────────────────────────────

    def get_user(self, access_token: str) -> Optional[SessionUser]:
        """Resolve a session JWT to its user, or None if it is not valid."""
        try:
            response = self.client.auth.get_user(access_token)
        except Exception as e:
            logger.warning(f"Session lookup failed: {e}")
            return None
        user = getattr(response, "user", None)
        if user is None:
            return None
        return SessionUser(id=user.id, email=user.email or "")

    # ── Profiles ─────────────────────────────────────────────────────────

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        try:
            result = (
                self.client.table("profiles")
                .select("*")
                .eq("id", user_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise PersistenceError(f"Could not load profile {user_id}: {e}") from e
        if not result.data:
            return None
        return _profile_from_row(result.data[0])

    def list_profiles(self) -> list[UserProfile]:
        try:
            result = (
                self.client.table("profiles")
                .select("*")
                .order("created_at", desc=True)
                .execute()
            )
        except Exception as e:
            raise PersistenceError(f"Could not list profiles: {e}") from e
        return [_profile_from_row(row) for row in result.data or []]

    def update_credits(self, user_id: str, credits: float, expected: Optional[float] = None) -> bool:
        """
        Write a new balance. With `expected`, only writes if the stored balance
        still equals it; returns False when another writer got there first.
        """
        query = self.client.table("profiles").update({"credits": credits}).eq("id", user_id)
        if expected is not None:
            query = query.eq("credits", expected)
        try:
            result = query.execute()
        except Exception as e:
            raise PersistenceError(f"Could not update credits for {user_id}: {e}") from e
        return bool(result.data)

    # ── Assets ───────────────────────────────────────────────────────────

    def insert_asset(self, row: dict) -> None:
        try:
            self.client.table("assets").insert([row]).execute()
        except Exception as e:
            raise PersistenceError(f"Could not save asset {row.get('id')}: {e}") from e

    def get_asset(self, user_id: str, asset_id: str) -> Optional[dict]:
        try:
            result = (
                self.client.table("assets")
                .select("*")
                .eq("id", asset_id)
                .eq("user_id", user_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise PersistenceError(f"Could not load asset {asset_id}: {e}") from e
        return result.data[0] if result.data else None

    def delete_asset(self, user_id: str, asset_id: str) -> None:
        try:
            (
                self.client.table("assets")
                .delete()
                .eq("id", asset_id)
                .eq("user_id", user_id)
                .execute()
            )
        except Exception as e:
            raise PersistenceError(f"Could not delete asset {asset_id}: {e}") from e

    def list_assets(
        self,
        user_id: str,
        asset_type: Optional[AssetType] = None,
        limit: Optional[int] = None,
    ) -> list[dict]:
        query = (
            self.client.table("assets")
            .select("*")
            .eq("user_id", user_id)
            .order("created_at", desc=True)
        )
        if asset_type:
            query = query.eq("type", asset_type.value)
        if limit:
            query = query.limit(limit)
        try:
            result = query.execute()
        except Exception as e:
            raise PersistenceError(f"Could not list assets for {user_id}: {e}") from e
        return result.data or []

    def count_assets(self, user_id: str, asset_type: Optional[AssetType] = None) -> int:
        query = self.client.table("assets").select("id", count="exact").eq("user_id", user_id)
        if asset_type:
            query = query.eq("type", asset_type.value)
        try:
            result = query.execute()
        except Exception as e:
            raise PersistenceError(f"Could not count assets for {user_id}: {e}") from e
        return result.count or 0
