import logging
from typing import Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class StorageError(Exception):
    pass


class SupabaseImageStorage:
    """
    Signs time-limited URLs for images in a private Supabase storage bucket.

    Uses the storage REST API with the service role key, so it must only run
    server-side.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        service_key: Optional[str],
        bucket: str = "items",
        expires_in: int = 3600,
        timeout: float = 10.0,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self.expires_in = expires_in
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        if not self.base_url or not self.service_key:
            raise StorageError(
                "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required for signing image URLs"
            )
        return {
            "Authorization": f"Bearer {self.service_key}",
            "apikey": self.service_key,
        }

    def _absolute(self, signed_url: str) -> str:
        # The API answers with a path relative to /storage/v1
        if signed_url.startswith(("http://", "https://")):
            return signed_url
        return f"{self.base_url}/storage/v1{signed_url}"

    async def sign_urls(self, paths: List[str], expires_in: Optional[int] = None) -> Dict[str, Optional[str]]:
        """
        Sign many paths in one request.

        Returns a mapping path -> URL, with ``None`` for paths the storage API
        refused (missing object, bad path). Transport failures raise
        :class:`StorageError`.
        """
        unique = list(dict.fromkeys(p for p in paths if p))
        if not unique:
            return {}

        try:
            response = await self.client.post(
                f"{self.base_url}/storage/v1/object/sign/{self.bucket}",
                headers=self._headers(),
                json={"expiresIn": expires_in or self.expires_in, "paths": unique},
                timeout=self.timeout,
            )
            response.raise_for_status()
            entries = response.json()
        except httpx.HTTPError as e:
            raise StorageError(f"Failed to sign image URLs: {e}") from e

        signed: Dict[str, Optional[str]] = {path: None for path in unique}
        for entry in entries:
            path = entry.get("path")
            if path not in signed:
                continue
            if entry.get("error") or not entry.get("signedURL"):
                logger.warning(f"Storage refused to sign '{path}': {entry.get('error')}")
                continue
            signed[path] = self._absolute(entry["signedURL"])
        return signed

    async def sign_url(self, path: str, expires_in: Optional[int] = None) -> str:
        try:
            response = await self.client.post(
                f"{self.base_url}/storage/v1/object/sign/{self.bucket}/{path}",
                headers=self._headers(),
                json={"expiresIn": expires_in or self.expires_in},
                timeout=self.timeout,
            )
            response.raise_for_status()
            return self._absolute(response.json()["signedURL"])
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise StorageError(f"Failed to generate signed URL for '{path}': {e}") from e
