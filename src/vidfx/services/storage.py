"""Object storage adapters and storage path conventions."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path, PurePosixPath
from urllib.parse import quote
from uuid import uuid4

import httpx

from vidfx.errors import StorageError

logger = logging.getLogger(__name__)

ORIGINAL_SEGMENT = "original"
PROCESSED_SEGMENT = "processed"


def source_object_name(user_id: str, filename: str) -> str:
    """Storage path for a new upload: ``<user>/original/<uuid><ext>``."""
    suffix = PurePosixPath(filename).suffix.lower() or ".mp4"
    return f"{user_id}/{ORIGINAL_SEGMENT}/{uuid4()}{suffix}"


def processed_path(source_path: str) -> str:
    """Derive the result path for a source path.

    ``u/original/x.mp4`` becomes ``u/processed/x.mp4``; a path without an
    ``original`` segment gets ``processed/`` inserted before the file name.
    """
    path = PurePosixPath(source_path)
    parts = list(path.parts)
    # last directory segment named "original" wins
    for index in range(len(parts) - 2, -1, -1):
        if parts[index] == ORIGINAL_SEGMENT:
            parts[index] = PROCESSED_SEGMENT
            return str(PurePosixPath(*parts))
    return str(path.parent / PROCESSED_SEGMENT / path.name)


def download_filename(original_name: str) -> str:
    """File name offered when downloading a result."""
    return f"transformed-{original_name}"


class LocalObjectStorage:
    """Filesystem-backed object storage.

    Objects live under ``<root>/<bucket>/<path>``. Signed URLs are plain
    ``file://`` URIs.
    """

    def __init__(self, root: Path, bucket: str = "videos") -> None:
        self.root = Path(root)
        self.bucket = bucket

    def _resolve(self, path: str) -> Path:
        base = (self.root / self.bucket).resolve()
        target = (base / path).resolve()
        if base not in target.parents:
            raise StorageError(f"Invalid object path: {path}")
        return target

    async def exists(self, path: str) -> bool:
        return self._resolve(path).is_file()

    async def download(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise StorageError(f"Object not found: {path}")
        return await asyncio.to_thread(target.read_bytes)

    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: str = "video/mp4",
        upsert: bool = True,
    ) -> str:
        target = self._resolve(path)
        if target.exists() and not upsert:
            raise StorageError(f"Object already exists: {path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(target.write_bytes, data)
        logger.info("Stored %s (%d bytes)", path, len(data))
        return path

    async def signed_url(self, path: str, expires_in: int = 3600) -> str:
        target = self._resolve(path)
        if not target.is_file():
            raise StorageError(f"Object not found: {path}")
        return target.as_uri()


class HTTPObjectStorage:
    """Client for a Supabase-style storage REST API.

    Uses ``/storage/v1/object/<bucket>/<path>`` for reads and writes and
    ``/storage/v1/object/sign/<bucket>/<path>`` for signed URLs.
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str = "videos",
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self._headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }
        self._client = client or httpx.AsyncClient(timeout=timeout)

    def _object_url(self, path: str, prefix: str = "object") -> str:
        return f"{self.base_url}/storage/v1/{prefix}/{self.bucket}/{quote(path)}"

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(
                method, url, headers={**self._headers, **kwargs.pop("headers", {})}, **kwargs
            )
        except httpx.RequestError as e:
            raise StorageError(f"Storage request failed: {e}") from e
        return response

    async def exists(self, path: str) -> bool:
        response = await self._request("HEAD", self._object_url(path))
        return response.status_code == 200

    async def download(self, path: str) -> bytes:
        response = await self._request("GET", self._object_url(path))
        if response.status_code != 200:
            raise StorageError(f"Download of {path} failed ({response.status_code}): {response.text}")
        return response.content

    async def upload(
        self,
        path: str,
        data: bytes,
        content_type: str = "video/mp4",
        upsert: bool = True,
    ) -> str:
        response = await self._request(
            "POST",
            self._object_url(path),
            content=data,
            headers={"Content-Type": content_type, "x-upsert": str(upsert).lower()},
        )
        if response.status_code not in (200, 201):
            raise StorageError(f"Upload of {path} failed ({response.status_code}): {response.text}")
        logger.info("Stored %s (%d bytes)", path, len(data))
        return path

    async def signed_url(self, path: str, expires_in: int = 3600) -> str:
        response = await self._request(
            "POST",
            self._object_url(path, prefix="object/sign"),
            json={"expiresIn": expires_in},
        )
        if response.status_code != 200:
            raise StorageError(f"Signing {path} failed ({response.status_code}): {response.text}")
        signed = response.json().get("signedURL")
        if not signed:
            raise StorageError(f"Storage did not return a signed URL for {path}")
        return f"{self.base_url}/storage/v1{signed}"

    async def aclose(self) -> None:
        await self._client.aclose()
