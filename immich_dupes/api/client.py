import logging
import mimetypes
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from .. import config
from ..exceptions import (
    ApiError,
    AssetNotFoundError,
    AuthenticationError,
    InvalidApiKeyError,
)
from ..models import Asset, DuplicateGroup


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip() or response.reason_phrase
    if isinstance(body, dict) and body.get('message'):
        message = body['message']
        return '; '.join(message) if isinstance(message, list) else str(message)
    return response.text.strip() or response.reason_phrase


class ImmichClient:
    """
    Thin async wrapper over the Immich REST API.

    Only the calls this tool needs are exposed. Metadata writes are limited
    to the fields the server accepts (GPS, capture time, description).
    """

    def __init__(self, base_url: str, api_key: str,
                 timeout: float = config.REQUEST_TIMEOUT,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        if not api_key or not api_key.strip():
            raise InvalidApiKeyError("API key is empty")

        self.base_url = base_url.rstrip('/')
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={'x-api-key': api_key.strip(), 'Accept': 'application/json'},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> 'ImmichClient':
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    # --- plumbing ---

    @staticmethod
    def _check(response: httpx.Response, asset_id: Optional[str] = None) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return
        message = _error_message(response)
        if status in (401, 403):
            raise AuthenticationError(status, message)
        if status == 404:
            raise AssetNotFoundError(asset_id, message)
        raise ApiError(status, message)

    async def _request(self, method: str, path: str, asset_id: Optional[str] = None,
                       **kwargs) -> httpx.Response:
        logging.debug(f"{method} {path}")
        response = await self._client.request(method, path, **kwargs)
        self._check(response, asset_id)
        return response

    # --- reads ---

    async def get_duplicates(self) -> List[DuplicateGroup]:
        response = await self._request('GET', '/api/duplicates')
        groups = []
        for item in response.json():
            try:
                groups.append(DuplicateGroup.from_api(item))
            except (KeyError, TypeError) as e:
                logging.warning(f"Skipping malformed duplicate group: {e!r}")
        return groups

    async def get_asset(self, asset_id: str) -> Asset:
        response = await self._request('GET', f'/api/assets/{asset_id}', asset_id=asset_id)
        return Asset.from_api(response.json())

    async def iter_assets(self, page_size: int = config.SEARCH_PAGE_SIZE) -> AsyncIterator[Asset]:
        """Walks the whole library via metadata search, following nextPage."""
        page: Optional[Any] = 1
        while page is not None:
            response = await self._request('POST', '/api/search/metadata', json={
                'page': int(page),
                'size': page_size,
                'withExif': True,
                'withDeleted': False,
            })
            assets = response.json().get('assets') or {}
            for item in assets.get('items', []):
                try:
                    yield Asset.from_api(item)
                except ValueError as e:
                    logging.warning(f"Skipping malformed asset in search results: {e}")
            page = assets.get('nextPage')

    async def get_albums_for_asset(self, asset_id: str) -> List[Dict[str, Any]]:
        response = await self._request('GET', '/api/albums', params={'assetId': asset_id})
        return response.json()

    # --- writes ---

    async def download_asset(self, asset_id: str, dest: Path) -> int:
        """Streams the original file to `dest`. Returns bytes written."""
        written = 0
        async with self._client.stream('GET', f'/api/assets/{asset_id}/original') as response:
            if not 200 <= response.status_code < 300:
                await response.aread()
                self._check(response, asset_id)
            with open(dest, 'wb') as f:
                async for chunk in response.aiter_bytes(config.DOWNLOAD_CHUNK_SIZE):
                    f.write(chunk)
                    written += len(chunk)
        return written

    async def update_asset_metadata(self, asset_id: str, *,
                                    latitude: Optional[float] = None,
                                    longitude: Optional[float] = None,
                                    date_time_original: Optional[str] = None,
                                    description: Optional[str] = None) -> None:
        body: Dict[str, Any] = {}
        if latitude is not None and longitude is not None:
            body['latitude'] = latitude
            body['longitude'] = longitude
        if date_time_original is not None:
            body['dateTimeOriginal'] = date_time_original
        if description is not None:
            body['description'] = description
        if not body:
            return
        await self._request('PUT', f'/api/assets/{asset_id}', asset_id=asset_id, json=body)

    async def delete_assets(self, asset_ids: List[str], force: bool = False) -> None:
        if not asset_ids:
            return
        await self._request('DELETE', '/api/assets', json={'ids': list(asset_ids), 'force': force})

    async def add_assets_to_album(self, album_id: str, asset_ids: List[str]) -> None:
        await self._request('PUT', f'/api/albums/{album_id}/assets', json={'ids': list(asset_ids)})

    async def remove_assets_from_album(self, album_id: str, asset_ids: List[str]) -> None:
        await self._request('DELETE', f'/api/albums/{album_id}/assets', json={'ids': list(asset_ids)})

    async def upload_asset(self, path: Path, filename: str, created_at: datetime) -> Dict[str, Any]:
        """
        Uploads a file as a new asset. The server answers with
        {"id": ..., "status": "created" | "duplicate"}.
        """
        stamp = created_at.isoformat()
        mime = config.MIME_TYPES.get(path.suffix.lower()) \
            or mimetypes.guess_type(filename)[0] or 'application/octet-stream'
        data = {
            'deviceAssetId': f'restore-{uuid.uuid4()}',
            'deviceId': config.UPLOAD_DEVICE_ID,
            'fileCreatedAt': stamp,
            'fileModifiedAt': stamp,
        }
        with open(path, 'rb') as f:
            response = await self._request(
                'POST', '/api/assets',
                data=data,
                files={'assetData': (filename, f, mime)},
            )
        return response.json()
