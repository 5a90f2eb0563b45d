"""Resumable chunked uploads over the tus 1.0.0 protocol."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import TypeVar
from urllib.parse import urljoin

import httpx

from vidfx.errors import AuthenticationError, UploadFailedError

logger = logging.getLogger(__name__)

TUS_VERSION = "1.0.0"
DEFAULT_CHUNK_SIZE = 6 * 1024 * 1024
DEFAULT_RETRY_DELAYS: tuple[float, ...] = (0.0, 3.0, 5.0, 10.0, 20.0)

# Client errors that tus servers use for temporary conflicts/locks
_RETRYABLE_CLIENT_STATUS = {409, 423}

T = TypeVar("T")

# (bytes_uploaded, bytes_total)
UploadProgressCallback = Callable[[int, int], None]


class _TransientError(Exception):
    """Failure worth retrying; wraps the original cause."""

    def __init__(self, cause: BaseException | str):
        super().__init__(str(cause))
        self.cause = cause if isinstance(cause, BaseException) else None


class _SessionExpired(Exception):
    """Server no longer knows the upload URL."""


def file_fingerprint(path: Path, endpoint: str) -> str:
    """Identify a local file for resume lookups."""
    stat = path.stat()
    return "-".join(["tus", path.name, str(stat.st_size), str(stat.st_mtime_ns), endpoint])


def encode_metadata(metadata: dict[str, str]) -> str:
    """Encode ``Upload-Metadata`` (comma-separated ``key base64(value)``)."""
    return ",".join(
        f"{key} {base64.b64encode(value.encode('utf-8')).decode('ascii')}"
        for key, value in metadata.items()
    )


def _read_chunk(path: Path, offset: int, size: int) -> bytes:
    with open(path, "rb") as f:
        f.seek(offset)
        return f.read(size)


class FingerprintStore:
    """Maps file fingerprints to unfinished upload URLs.

    Persists to a JSON file when ``path`` is given, otherwise in-memory.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = Path(path) if path else None
        self._urls: dict[str, str] = {}
        if self.path and self.path.exists():
            self._urls = json.loads(self.path.read_text(encoding="utf-8"))

    def get(self, fingerprint: str) -> str | None:
        return self._urls.get(fingerprint)

    def set(self, fingerprint: str, url: str) -> None:
        self._urls[fingerprint] = url
        self._save()

    def remove(self, fingerprint: str) -> None:
        if self._urls.pop(fingerprint, None) is not None:
            self._save()

    def __contains__(self, fingerprint: str) -> bool:
        return fingerprint in self._urls

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(self._urls, indent=2), encoding="utf-8")


class ResumableUploader:
    """tus client that streams a file to storage in fixed-size chunks.

    Chunks are sent sequentially. Before starting, a previous unfinished
    session for the same file is resumed from the server's acknowledged
    offset. Transient failures are retried following ``retry_delays``;
    the attempt counter resets after every acknowledged chunk.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        bucket: str = "videos",
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        retry_delays: Sequence[float] = DEFAULT_RETRY_DELAYS,
        fingerprints: FingerprintStore | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.endpoint = endpoint
        self.bucket = bucket
        self.chunk_size = chunk_size
        self.retry_delays = list(retry_delays)
        self.fingerprints = fingerprints or FingerprintStore()
        self.timeout = timeout
        self._client = client
        self._sleep = sleep

    async def upload(
        self,
        file_path: Path | str,
        destination_path: str,
        credential: str | None,
        *,
        content_type: str = "video/mp4",
        cache_control: str = "3600",
        on_progress: UploadProgressCallback | None = None,
    ) -> str:
        """Upload a file and return its destination path.

        Raises:
            AuthenticationError: If no credential is given.
            UploadFailedError: If the upload fails or retries run out.
        """
        if not credential:
            raise AuthenticationError("No session found")

        if self._client is not None:
            return await self._upload(
                self._client, Path(file_path), destination_path, credential,
                content_type, cache_control, on_progress,
            )
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._upload(
                client, Path(file_path), destination_path, credential,
                content_type, cache_control, on_progress,
            )

    async def _upload(
        self,
        client: httpx.AsyncClient,
        file_path: Path,
        destination_path: str,
        credential: str,
        content_type: str,
        cache_control: str,
        on_progress: UploadProgressCallback | None,
    ) -> str:
        total = file_path.stat().st_size
        fingerprint = file_fingerprint(file_path, self.endpoint)
        headers = {
            "Tus-Resumable": TUS_VERSION,
            "Authorization": f"Bearer {credential}",
            "x-upsert": "true",
        }

        url, offset = await self._resume(client, fingerprint, headers)
        if url is None:
            metadata = {
                "bucketName": self.bucket,
                "objectName": destination_path,
                "contentType": content_type,
                "cacheControl": cache_control,
            }
            url = await self._with_retries(
                lambda _: self._create(client, headers, total, metadata),
                f"Creating upload for {file_path.name}",
            )
            self.fingerprints.set(fingerprint, url)
            offset = 0
        else:
            logger.info("Resuming upload of %s at byte %d/%d", file_path.name, offset, total)
            if on_progress and offset:
                on_progress(min(offset, total), total)

        while offset < total:
            start = offset

            async def _step(retry: int) -> int:
                current = start if retry == 0 else await self._fetch_offset(client, url, headers)
                if current >= total:
                    return current
                chunk = await asyncio.to_thread(_read_chunk, file_path, current, self.chunk_size)
                acknowledged = await self._send_chunk(client, url, headers, current, chunk)
                if acknowledged <= current:
                    raise _TransientError(f"Server did not advance past byte {current}")
                return acknowledged

            try:
                offset = await self._with_retries(_step, f"Chunk at byte {start}")
            except _SessionExpired as e:
                self.fingerprints.remove(fingerprint)
                raise UploadFailedError(f"Upload session expired: {url}", cause=e) from e
            if on_progress:
                on_progress(min(offset, total), total)

        self.fingerprints.remove(fingerprint)
        logger.info("Upload complete: %s (%d bytes)", destination_path, total)
        return destination_path

    async def _resume(
        self,
        client: httpx.AsyncClient,
        fingerprint: str,
        headers: dict[str, str],
    ) -> tuple[str | None, int]:
        """Look up a previous session; return (url, offset) or (None, 0)."""
        url = self.fingerprints.get(fingerprint)
        if url is None:
            return None, 0
        try:
            offset = await self._with_retries(
                lambda _: self._fetch_offset(client, url, headers),
                "Checking previous upload",
            )
        except _SessionExpired:
            logger.info("Previous upload session is gone, starting over")
            self.fingerprints.remove(fingerprint)
            return None, 0
        return url, offset

    async def _with_retries(
        self,
        operation: Callable[[int], Awaitable[T]],
        description: str,
    ) -> T:
        attempt = 0
        while True:
            try:
                return await operation(attempt)
            except _TransientError as e:
                if attempt >= len(self.retry_delays):
                    raise UploadFailedError(
                        f"{description} failed after {attempt} retries: {e}",
                        cause=e.cause,
                    ) from e.cause
                delay = self.retry_delays[attempt]
                attempt += 1
                logger.warning(
                    "%s failed (%s), retry %d/%d in %.1fs",
                    description, e, attempt, len(self.retry_delays), delay,
                )
                await self._sleep(delay)

    async def _request(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        headers: dict[str, str],
        content: bytes | None = None,
    ) -> httpx.Response:
        try:
            response = await client.request(method, url, headers=headers, content=content)
        except httpx.TransportError as e:
            raise _TransientError(e) from e

        status = response.status_code
        if status < 400:
            return response
        if status >= 500 or status in _RETRYABLE_CLIENT_STATUS:
            raise _TransientError(f"{method} {url} returned {status}")
        if method == "HEAD" and status in (404, 410):
            raise _SessionExpired(url)
        raise UploadFailedError(f"{method} {url} returned {status}: {response.text}")

    async def _create(
        self,
        client: httpx.AsyncClient,
        headers: dict[str, str],
        total: int,
        metadata: dict[str, str],
    ) -> str:
        response = await self._request(
            client,
            "POST",
            self.endpoint,
            {
                **headers,
                "Upload-Length": str(total),
                "Upload-Metadata": encode_metadata(metadata),
            },
        )
        location = response.headers.get("Location")
        if not location:
            raise UploadFailedError("Upload server did not return a Location header")
        return urljoin(self.endpoint, location)

    async def _fetch_offset(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: dict[str, str],
    ) -> int:
        response = await self._request(client, "HEAD", url, headers)
        return self._offset_from(response)

    async def _send_chunk(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: dict[str, str],
        offset: int,
        chunk: bytes,
    ) -> int:
        response = await self._request(
            client,
            "PATCH",
            url,
            {
                **headers,
                "Upload-Offset": str(offset),
                "Content-Type": "application/offset+octet-stream",
            },
            content=chunk,
        )
        return self._offset_from(response)

    @staticmethod
    def _offset_from(response: httpx.Response) -> int:
        value = response.headers.get("Upload-Offset")
        if value is None:
            raise UploadFailedError("Upload server did not return Upload-Offset")
        return int(value)
