"""Tests for storage path conventions and storage adapters."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from vidfx.errors import StorageError
from vidfx.services.storage import (
    HTTPObjectStorage,
    LocalObjectStorage,
    download_filename,
    processed_path,
    source_object_name,
)


class TestPaths:
    def test_processed_path(self) -> None:
        assert processed_path("u1/original/abc.mp4") == "u1/processed/abc.mp4"

    def test_processed_path_uses_last_original_segment(self) -> None:
        assert processed_path("original/u1/original/abc.mp4") == "original/u1/processed/abc.mp4"

    def test_processed_path_without_original_segment(self) -> None:
        assert processed_path("u1/abc.mp4") == "u1/processed/abc.mp4"

    def test_file_named_original_is_not_rewritten(self) -> None:
        assert processed_path("u1/original") == "u1/processed/original"

    def test_source_object_name(self) -> None:
        first = source_object_name("u1", "Holiday.MOV")
        second = source_object_name("u1", "Holiday.MOV")
        assert first.startswith("u1/original/")
        assert first.endswith(".mov")
        assert first != second

    def test_source_object_name_defaults_extension(self) -> None:
        assert source_object_name("u1", "clip").endswith(".mp4")

    def test_download_filename(self) -> None:
        assert download_filename("clip.mp4") == "transformed-clip.mp4"


class TestLocalObjectStorage:
    @pytest.mark.asyncio
    async def test_upload_and_download(self, tmp_path: Path) -> None:
        storage = LocalObjectStorage(tmp_path)
        await storage.upload("u1/processed/a.mp4", b"data")

        assert (tmp_path / "videos" / "u1" / "processed" / "a.mp4").read_bytes() == b"data"
        assert await storage.exists("u1/processed/a.mp4")
        assert await storage.download("u1/processed/a.mp4") == b"data"

    @pytest.mark.asyncio
    async def test_no_upsert(self, tmp_path: Path) -> None:
        storage = LocalObjectStorage(tmp_path)
        await storage.upload("a.mp4", b"one")
        with pytest.raises(StorageError, match="already exists"):
            await storage.upload("a.mp4", b"two", upsert=False)
        assert await storage.download("a.mp4") == b"one"

    @pytest.mark.asyncio
    async def test_missing_object(self, tmp_path: Path) -> None:
        storage = LocalObjectStorage(tmp_path)
        assert not await storage.exists("nope.mp4")
        with pytest.raises(StorageError, match="not found"):
            await storage.download("nope.mp4")
        with pytest.raises(StorageError):
            await storage.signed_url("nope.mp4")

    @pytest.mark.asyncio
    async def test_rejects_paths_outside_bucket(self, tmp_path: Path) -> None:
        storage = LocalObjectStorage(tmp_path / "root")
        with pytest.raises(StorageError, match="Invalid object path"):
            await storage.upload("../../escape.mp4", b"x")
        assert not (tmp_path / "escape.mp4").exists()

    @pytest.mark.asyncio
    async def test_signed_url_is_file_uri(self, tmp_path: Path) -> None:
        storage = LocalObjectStorage(tmp_path)
        await storage.upload("u1/processed/a.mp4", b"data")
        url = await storage.signed_url("u1/processed/a.mp4", 60)
        assert url == (tmp_path / "videos" / "u1" / "processed" / "a.mp4").resolve().as_uri()


class TestHTTPObjectStorage:
    def _storage(self, handler) -> HTTPObjectStorage:
        return HTTPObjectStorage(
            "http://storage.test/",
            "service-key",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

    @pytest.mark.asyncio
    async def test_signed_url(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"signedURL": "/object/sign/videos/u1/processed/a.mp4?token=abc"})

        url = await self._storage(handler).signed_url("u1/processed/a.mp4", 120)

        assert url == "http://storage.test/storage/v1/object/sign/videos/u1/processed/a.mp4?token=abc"
        request = seen[0]
        assert request.url.path == "/storage/v1/object/sign/videos/u1/processed/a.mp4"
        assert json.loads(request.content) == {"expiresIn": 120}
        assert request.headers["Authorization"] == "Bearer service-key"
        assert request.headers["apikey"] == "service-key"

    @pytest.mark.asyncio
    async def test_download_and_upload(self) -> None:
        uploads: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, content=b"original")
            uploads.append(request)
            return httpx.Response(200, json={"Key": "videos/u1/processed/a.mp4"})

        storage = self._storage(handler)
        assert await storage.download("u1/original/a.mp4") == b"original"
        assert await storage.upload("u1/processed/a.mp4", b"out", upsert=True) == "u1/processed/a.mp4"
        assert uploads[0].headers["x-upsert"] == "true"
        assert uploads[0].headers["Content-Type"] == "video/mp4"
        assert uploads[0].content == b"out"

    @pytest.mark.asyncio
    async def test_errors_become_storage_errors(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "HEAD":
                return httpx.Response(404)
            if request.url.path.startswith("/storage/v1/object/sign"):
                return httpx.Response(200, json={})
            raise httpx.ConnectError("connection refused", request=request)

        storage = self._storage(handler)
        assert not await storage.exists("a.mp4")
        with pytest.raises(StorageError, match="did not return"):
            await storage.signed_url("a.mp4")
        with pytest.raises(StorageError, match="request failed"):
            await storage.download("a.mp4")
