"""Client for the remote execution backend.

Submitting a record is the only trigger the client pulls: the backend
schedules the worker when the record is inserted. Live progress arrives
as a server-sent event stream of record snapshots.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

import httpx

from vidfx.errors import (
    AuthenticationError,
    RecordNotFoundError,
    SubmissionFailedError,
    VidFXError,
)
from vidfx.models.processing import AccessToken, Principal
from vidfx.models.transformation import TransformationRequest

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1/transformations"


class RemoteAPIError(VidFXError):
    """Backend returned an unexpected response."""

    kind = "remote_api"

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteExecutionCoordinator:
    """Hands work to the backend and exposes its live status feed."""

    def __init__(
        self,
        base_url: str,
        principal: Principal | None = None,
        *,
        timeout: float = 30.0,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.principal = principal
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._sleep = sleep

    def _auth_headers(self, principal: Principal | None = None) -> dict[str, str]:
        principal = principal or self.principal
        if principal is None:
            raise AuthenticationError("Sign in to use server-side processing")
        return {"Authorization": f"Bearer {principal.access_token}"}

    def _url(self, suffix: str = "") -> str:
        return f"{self.base_url}{API_PREFIX}{suffix}"

    async def submit(
        self,
        source_path: str,
        effect_id: str,
        owner_id: str,
        *,
        principal: Principal | None = None,
    ) -> TransformationRequest:
        """Create a pending transformation record.

        Timeouts are retried (fixed backoff, ``max_attempts`` total); any
        other failure is not.

        Raises:
            AuthenticationError: If there is no principal.
            SubmissionFailedError: If the record could not be created.
        """
        headers = self._auth_headers(principal)
        payload = {"source_path": source_path, "effect": effect_id, "owner_id": owner_id}

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self._client.post(self._url(), json=payload, headers=headers)
            except httpx.TimeoutException as e:
                reason = f"timed out: {e}"
            except httpx.RequestError as e:
                raise SubmissionFailedError(f"Failed to reach backend: {e}") from e
            else:
                if response.status_code == 201:
                    record = TransformationRequest.model_validate(response.json())
                    logger.info("Submitted transformation %s (%s)", record.id, effect_id)
                    return record
                if response.status_code != 504:
                    raise SubmissionFailedError(
                        f"Backend rejected submission: {response.text}",
                        status_code=response.status_code,
                    )
                reason = "gateway timeout"

            if attempt < self.max_attempts:
                logger.warning(
                    "Submission %s, retrying in %.1fs (%d/%d)",
                    reason, self.retry_delay, attempt, self.max_attempts,
                )
                await self._sleep(self.retry_delay)

        raise SubmissionFailedError(f"Submission {reason} after {self.max_attempts} attempts")

    async def issue_access_token(self, request_id: str, *, principal: Principal | None = None) -> AccessToken:
        """Get a short-lived token that can read one record's updates."""
        response = await self._send("POST", f"/{request_id}/token", principal)
        return AccessToken.model_validate(response.json())

    async def get(self, request_id: str, *, principal: Principal | None = None) -> TransformationRequest:
        response = await self._send("GET", f"/{request_id}", principal)
        return TransformationRequest.model_validate(response.json())

    async def list_transformations(self, *, principal: Principal | None = None) -> list[TransformationRequest]:
        """List the principal's transformations, most recent first."""
        response = await self._send("GET", "", principal)
        return [TransformationRequest.model_validate(item) for item in response.json()]

    async def result_url(self, request_id: str, *, principal: Principal | None = None) -> str:
        """Resolve a playable URL for a completed transformation."""
        response = await self._send("GET", f"/{request_id}/result", principal)
        return response.json()["url"]

    async def subscribe(
        self,
        request_id: str,
        token: AccessToken | str,
    ) -> AsyncIterator[TransformationRequest]:
        """Yield record snapshots until the record reaches a terminal status."""
        token_value = token.token if isinstance(token, AccessToken) else token
        headers = {
            "Authorization": f"Bearer {token_value}",
            "Accept": "text/event-stream",
        }
        async with self._client.stream(
            "GET",
            self._url(f"/{request_id}/events"),
            headers=headers,
            timeout=httpx.Timeout(None, connect=10.0),
        ) as response:
            if response.status_code != 200:
                await response.aread()
                self._raise_for(response)
            async for data in _iter_sse_data(response):
                record = TransformationRequest.model_validate(json.loads(data))
                yield record
                if record.is_terminal:
                    return

    async def _send(self, method: str, suffix: str, principal: Principal | None = None) -> httpx.Response:
        headers = self._auth_headers(principal)
        try:
            response = await self._client.request(method, self._url(suffix), headers=headers)
        except httpx.RequestError as e:
            raise RemoteAPIError(f"Failed to reach backend: {e}") from e
        if response.status_code >= 400:
            self._raise_for(response)
        return response

    @staticmethod
    def _raise_for(response: httpx.Response) -> None:
        if response.status_code in (401, 403):
            raise AuthenticationError(f"Not authorized: {response.text}")
        if response.status_code == 404:
            raise RecordNotFoundError(f"Not found: {response.url.path}")
        raise RemoteAPIError(
            f"Backend returned {response.status_code}: {response.text}",
            status_code=response.status_code,
        )

    async def aclose(self) -> None:
        await self._client.aclose()


async def _iter_sse_data(response: httpx.Response) -> AsyncIterator[str]:
    """Yield the ``data`` payload of each server-sent event."""
    data_lines: list[str] = []
    async for line in response.aiter_lines():
        if not line:
            if data_lines:
                yield "\n".join(data_lines)
                data_lines = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if field == "data":
            data_lines.append(value[1:] if value.startswith(" ") else value)
    if data_lines:
        yield "\n".join(data_lines)
