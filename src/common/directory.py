from __future__ import annotations

from typing import Dict, Iterable, List, Optional

import httpx
from pydantic import BaseModel, ValidationError

from .http import JsonServiceClient, ServiceError


class DirectoryError(ServiceError):
    """Base error for the profile directory client."""


class DirectoryApiError(DirectoryError):
    """Directory returned an error or a row that does not fit the profile shape."""


class Profile(BaseModel):
    wallet_address: str
    name: str
    bio: Optional[str] = None
    image_url: str = ""
    telegram_id: Optional[str] = None
    twitter_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class DirectoryClient(JsonServiceClient):
    """
    Read-only client for the `profiles` table behind a PostgREST endpoint.

    Notes
    - Addresses are stored lower-cased; lookups normalize before filtering.
    - Reads retry transient failures; exhausted retries surface as
      `DirectoryError` and callers decide whether that is fatal.
    """

    error_cls = DirectoryError
    api_error_cls = DirectoryApiError
    service_name = "profile directory"

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        table: str = "profiles",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        if not api_key:
            raise ValueError("api_key is required")
        headers = {"apikey": api_key, "Authorization": f"Bearer {api_key}"}
        super().__init__(base_url, timeout=timeout, headers=headers, client=client)
        self._path = f"/rest/v1/{table}"

    # --------------- Public API ---------------
    def get_profile(self, address: str) -> Optional[Profile]:
        rows = self._select({"wallet_address": f"eq.{address.lower()}", "limit": 1})
        return rows[0] if rows else None

    def get_profiles(self, addresses: Iterable[str]) -> Dict[str, Profile]:
        """Batch lookup keyed by lower-cased address; unknown addresses are absent."""
        lowered = sorted({a.lower() for a in addresses})
        if not lowered:
            return {}
        rows = self._select({"wallet_address": f"in.({','.join(lowered)})"})
        return {p.wallet_address.lower(): p for p in rows}

    def list_profiles(self, *, exclude: Optional[str] = None) -> List[Profile]:
        params: Dict[str, str] = {}
        if exclude:
            params["wallet_address"] = f"neq.{exclude.lower()}"
        return self._select(params)

    # --------------- Internal ---------------
    def _select(self, filters: Dict[str, object]) -> List[Profile]:
        params = {"select": "*", **filters}
        data = self._request("GET", self._path, params=params)
        if data is None:
            return []
        if not isinstance(data, list):
            raise DirectoryApiError("Expected a list of profile rows")
        try:
            return [Profile.model_validate(row) for row in data]
        except ValidationError as ve:
            raise DirectoryApiError(f"Failed to parse profile rows: {ve}") from ve


__all__ = [
    "DirectoryClient",
    "DirectoryError",
    "DirectoryApiError",
    "Profile",
]
