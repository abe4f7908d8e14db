import asyncio
import json
import uuid

import httpx
import pytest

from immich_dupes.api.client import ImmichClient
from immich_dupes.models import Asset

BASE_URL = "http://immich.test"
API_KEY = "test-key"


def asset_payload(asset_id, *, filename=None, width=4000, height=3000, file_size=1_000_000,
                  lat=None, lon=None, time_zone=None, make=None, model=None,
                  date_time_original=None, description=None, lens_model=None,
                  city=None, country=None, is_trashed=False, with_exif=True):
    """Builds an asset the way the server serializes it (camelCase)."""
    data = {
        "id": asset_id,
        "originalFileName": filename or f"{asset_id}.jpg",
        "fileCreatedAt": "2024-06-01T12:00:00.000Z",
        "localDateTime": "2024-06-01T12:00:00.000Z",
        "type": "IMAGE",
        "checksum": f"sum-{asset_id}",
        "isTrashed": is_trashed,
        "isFavorite": False,
        "isArchived": False,
    }
    if with_exif:
        data["exifInfo"] = {
            "exifImageWidth": width,
            "exifImageHeight": height,
            "fileSizeInByte": file_size,
            "latitude": lat,
            "longitude": lon,
            "timeZone": time_zone,
            "make": make,
            "model": model,
            "dateTimeOriginal": date_time_original,
            "description": description,
            "lensModel": lens_model,
            "city": city,
            "country": country,
        }
    return data


class FakeImmich:
    """
    In-memory stand-in for the server, served through httpx.MockTransport.

    Failures are injected per (method, path) with fail(); each entry is a
    list of status codes consumed one per matching request, or a single
    status repeated forever.
    """

    def __init__(self, api_key=API_KEY):
        self.api_key = api_key
        self.assets = {}
        self.originals = {}
        self.duplicates = []
        self.albums = {}
        self.calls = []
        self.uploads = []
        self.duplicate_upload_names = set()
        self._failures = {}

    # --- setup helpers ---

    def add(self, payload, content=None):
        self.assets[payload["id"]] = payload
        self.originals[payload["id"]] = content if content is not None else f"bytes-{payload['id']}".encode()
        return payload

    def add_group(self, duplicate_id, *payloads):
        for p in payloads:
            self.add(p)
        self.duplicates.append({"duplicateId": duplicate_id, "assets": list(payloads)})

    def add_album(self, album_id, name, asset_ids):
        self.albums[album_id] = {"id": album_id, "albumName": name, "assets": set(asset_ids)}

    def fail(self, method, path, status, times=None):
        self._failures[(method, path)] = [status] * times if times else status

    def exif(self, asset_id):
        return self.assets[asset_id]["exifInfo"]

    def calls_to(self, method, path):
        return [c for c in self.calls if c[0] == method and c[1] == path]

    def transport(self):
        return httpx.MockTransport(self.handle)

    # --- request handling ---

    def _injected(self, method, path):
        entry = self._failures.get((method, path))
        if entry is None:
            return None
        if isinstance(entry, list):
            if not entry:
                return None
            return entry.pop(0)
        return entry

    def handle(self, request: httpx.Request) -> httpx.Response:
        method = request.method
        path = request.url.path
        body = None
        if request.headers.get("content-type", "").startswith("application/json") and request.content:
            body = json.loads(request.content)
        self.calls.append((method, path, body))

        if request.headers.get("x-api-key") != self.api_key:
            return httpx.Response(401, json={"message": "Invalid API key"})

        status = self._injected(method, path)
        if status is not None:
            return httpx.Response(status, json={"message": f"injected {status}"})

        parts = path.strip("/").split("/")

        if path == "/api/duplicates" and method == "GET":
            return httpx.Response(200, json=self.duplicates)

        if path == "/api/search/metadata" and method == "POST":
            live = [a for a in self.assets.values() if not a["isTrashed"]]
            page, size = body["page"], body["size"]
            items = live[(page - 1) * size: page * size]
            next_page = str(page + 1) if page * size < len(live) else None
            return httpx.Response(200, json={"assets": {"items": items, "nextPage": next_page}})

        if path == "/api/assets" and method == "DELETE":
            for asset_id in body["ids"]:
                if body.get("force"):
                    self.assets.pop(asset_id, None)
                elif asset_id in self.assets:
                    self.assets[asset_id]["isTrashed"] = True
            return httpx.Response(204)

        if path == "/api/assets" and method == "POST":
            content = request.content
            self.uploads.append(content)
            if any(f'filename="{n}"'.encode() in content for n in self.duplicate_upload_names):
                return httpx.Response(200, json={"id": "existing", "status": "duplicate"})
            return httpx.Response(201, json={"id": str(uuid.uuid4()), "status": "created"})

        if parts[:2] == ["api", "assets"] and len(parts) >= 3:
            asset_id = parts[2]
            if asset_id not in self.assets:
                return httpx.Response(404, json={"message": "Asset not found"})
            if len(parts) == 4 and parts[3] == "original" and method == "GET":
                return httpx.Response(200, content=self.originals[asset_id])
            if method == "GET":
                return httpx.Response(200, json=self.assets[asset_id])
            if method == "PUT":
                exif = self.assets[asset_id].setdefault("exifInfo", {})
                for key in ("latitude", "longitude", "dateTimeOriginal", "description"):
                    if key in body:
                        exif[key] = body[key]
                return httpx.Response(200, json=self.assets[asset_id])

        if path == "/api/albums" and method == "GET":
            asset_id = request.url.params.get("assetId")
            found = [{"id": a["id"], "albumName": a["albumName"]}
                     for a in self.albums.values() if asset_id in a["assets"]]
            return httpx.Response(200, json=found)

        if parts[:2] == ["api", "albums"] and len(parts) == 4 and parts[3] == "assets":
            album = self.albums.get(parts[2])
            if album is None:
                return httpx.Response(404, json={"message": "Album not found"})
            if method == "PUT":
                already = [i for i in body["ids"] if i in album["assets"]]
                if already:
                    return httpx.Response(400, json={"message": "Asset already in album"})
                album["assets"].update(body["ids"])
            else:
                album["assets"].difference_update(body["ids"])
            return httpx.Response(200, json=[{"id": i, "success": True} for i in body["ids"]])

        return httpx.Response(404, json={"message": f"no route for {method} {path}"})


@pytest.fixture
def fake():
    return FakeImmich()


@pytest.fixture
def make_asset():
    """Returns a factory building model Assets from server-shaped payloads."""
    def factory(asset_id, **kwargs):
        return Asset.from_api(asset_payload(asset_id, **kwargs))
    return factory


@pytest.fixture
def with_client(fake):
    """
    Returns run(fn): opens a client against the fake server, awaits fn(client)
    inside asyncio.run and returns the result.
    """
    def run(fn, api_key=API_KEY):
        async def main():
            async with ImmichClient(BASE_URL, api_key, transport=fake.transport()) as client:
                return await fn(client)
        return asyncio.run(main())
    return run


@pytest.fixture
def payload():
    """Returns the server-shaped asset payload builder."""
    return asset_payload
