"""
PhotoPrism API client for interacting with the PhotoPrism instance.
"""

import asyncio
import time
from typing import Any, Dict, List, Optional
import httpx
from pydantic import ValidationError
from .models import AddLabelRequest, Photo, PhotoDetails, UpdatePhotoRequest
from .config import Settings
from .logging import get_logger
from .performance_monitor import performance_monitor


class PhotoPrismAPIError(Exception):
    """Custom exception for PhotoPrism API errors."""
    pass


class PhotoPrismClient:
    """Async client for the PhotoPrism REST API."""

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = settings.photoprism_url
        self.logger = get_logger("photoprism_client")
        self.timeout = settings.request_timeout
        self.max_retries = settings.max_retries
        self.retry_delay = settings.retry_delay
        self.poll_query = settings.poll_query

        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {settings.photoprism_token}",
                "Content-Type": "application/json",
            }
        )

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None
    ) -> httpx.Response:
        """Make an HTTP request with retry logic."""
        request_start = time.time()

        for attempt in range(self.max_retries + 1):
            try:
                response = await self.client.request(
                    method=method,
                    url=endpoint,
                    params=params,
                    json=json_data
                )
                response.raise_for_status()

                # Record successful API call
                performance_monitor.record_api_call(time.time() - request_start)
                return response

            except httpx.HTTPStatusError as e:
                if e.response.status_code >= 500 and attempt < self.max_retries:
                    self.logger.warning(
                        f"⚠️  Server error {e.response.status_code}, retrying "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    await asyncio.sleep(self.retry_delay * (2 ** attempt))  # Exponential backoff
                    continue
                performance_monitor.record_api_error()
                raise PhotoPrismAPIError(
                    f"{method} {endpoint} failed: HTTP {e.response.status_code}: {e.response.text[:200]}"
                )

            except httpx.RequestError as e:
                if attempt < self.max_retries:
                    self.logger.warning(f"Request error, retrying (attempt {attempt + 1}/{self.max_retries}): {e}")
                    await asyncio.sleep(self.retry_delay * (2 ** attempt))
                    continue
                performance_monitor.record_api_error()
                raise PhotoPrismAPIError(f"{method} {endpoint} failed: {e!r}")

        raise PhotoPrismAPIError(f"{method} {endpoint} failed: retries exhausted")

    async def search_photos(self, query: str, count: int, offset: int = 0) -> List[Photo]:
        """Search photos with a PhotoPrism filter query."""
        response = await self._make_request(
            method="GET",
            endpoint="/api/v1/photos",
            params={"q": query, "count": count, "offset": offset, "merged": "true"}
        )

        try:
            items = response.json()
        except ValueError as e:
            raise PhotoPrismAPIError(f"Invalid search response: {e}")

        if not isinstance(items, list):
            raise PhotoPrismAPIError(f"Unexpected search response type: {type(items).__name__}")

        photos = []
        for item in items:
            try:
                photos.append(Photo.model_validate(item))
            except ValidationError as e:
                self.logger.warning(f"⚠️  Failed to parse photo: {e.errors()[0].get('msg', e)}")
                continue
        return photos

    async def find_uncaptioned_photos(self, count: int) -> List[Photo]:
        """Get photos that have no caption yet (up to ``count``)."""
        photos = await self.search_photos(self.poll_query, count)
        self.logger.debug(f"🔍 Found {len(photos)} uncaptioned photos (page size {count})")
        return photos

    async def find_photo_uid(self, filename: str, folder: str) -> Optional[str]:
        """Look up a photo UID by file name and folder. Failures count as 'not found'."""
        query = f'path:"{folder}" name:"{filename}"'
        try:
            photos = await self.search_photos(query, count=1)
        except PhotoPrismAPIError as e:
            self.logger.warning(f"⚠️  Photo UID lookup failed | file: {folder}/{filename} | error: {e}")
            return None
        return photos[0].UID if photos else None

    async def wait_for_photo_uid(
        self,
        filename: str,
        folder: str,
        attempts: int = 20,
        interval: float = 3.0
    ) -> Optional[str]:
        """Poll until the index knows the file, or the attempt budget runs out."""
        for attempt in range(1, attempts + 1):
            uid = await self.find_photo_uid(filename, folder)
            self.logger.debug(f"Photo UID lookup | file: {folder}/{filename} | attempt {attempt}/{attempts} | uid: {uid}")
            if uid:
                return uid
            if attempt < attempts:
                await asyncio.sleep(interval)
        return None

    async def get_photo_labels(self, uid: str) -> List[str]:
        """Get the label names attached to a photo."""
        response = await self._make_request(method="GET", endpoint=f"/api/v1/photos/{uid}")
        try:
            details = PhotoDetails.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise PhotoPrismAPIError(f"Invalid photo response for {uid}: {e}")

        names = [label.label_name.strip() for label in details.Labels + details.PhotoLabels]
        return [name for name in names if name]

    async def has_label(self, uid: str, label: str) -> bool:
        """Check whether a photo already carries a label (case-insensitive)."""
        target = label.strip().lower()
        if not target:
            return False
        names = await self.get_photo_labels(uid)
        return target in {name.lower() for name in names}

    async def add_label(self, uid: str, name: str, priority: int = 0, uncertainty: int = 0) -> None:
        """Attach a label to a photo."""
        request_data = AddLabelRequest(Name=name, Priority=priority, Uncertainty=uncertainty)
        await self._make_request(
            method="POST",
            endpoint=f"/api/v1/photos/{uid}/label",
            json_data=request_data.model_dump()
        )
        self.logger.debug(f"Label added | uid: {uid} | label: {name}")

    async def update_photo(self, uid: str, description: str, caption: str) -> None:
        """Set a photo's caption and description."""
        request_data = UpdatePhotoRequest(Description=description, Caption=caption)
        await self._make_request(
            method="PUT",
            endpoint=f"/api/v1/photos/{uid}",
            json_data=request_data.model_dump()
        )
        self.logger.debug(f"Photo updated | uid: {uid}")

    async def test_connection(self) -> bool:
        """Test the connection to PhotoPrism."""
        try:
            await self.search_photos("", count=1)
            self.logger.info("Connection test successful")
            return True
        except PhotoPrismAPIError as e:
            self.logger.error(f"Connection test failed: {e}")
            return False

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
