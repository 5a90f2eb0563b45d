"""Transformation record endpoints."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from pathlib import PurePosixPath

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from vidfx.api.deps import (
    AppServices,
    bearer_token,
    get_principal,
    get_repository,
    get_services,
    get_token_issuer,
)
from vidfx.api.schemas import ResultResponse, TransformationCreateRequest
from vidfx.effects import lookup
from vidfx.errors import RecordNotFoundError, StorageError, UnknownEffectError
from vidfx.jobs.repository import TransformationRepository
from vidfx.jobs.tokens import AccessTokenIssuer
from vidfx.models.processing import AccessToken, Principal
from vidfx.models.transformation import TransformationRequest, TransformationStatus
from vidfx.services.storage import download_filename

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/transformations", tags=["transformations"])


def _owns_source(source_path: str, user_id: str) -> bool:
    """Whether ``source_path`` is a relative path inside the user's prefix."""
    path = PurePosixPath(source_path)
    if path.is_absolute() or ".." in path.parts or len(path.parts) < 2:
        return False
    return path.parts[0] == user_id


async def _owned_record(
    repo: TransformationRepository,
    request_id: str,
    principal: Principal,
) -> TransformationRequest:
    """Fetch a record, answering 404 for missing or foreign records."""
    try:
        record = await repo.get(request_id)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Transformation not found") from None
    if record.user_id != principal.user_id:
        raise HTTPException(status_code=404, detail="Transformation not found")
    return record


# ------------------------------------------------------------------
# POST: create records (201 Created, worker scheduled on insert)
# ------------------------------------------------------------------


@router.post("", response_model=TransformationRequest, status_code=201)
async def create_transformation(
    req: TransformationCreateRequest,
    principal: Principal = Depends(get_principal),
    repo: TransformationRepository = Depends(get_repository),
) -> TransformationRequest:
    if req.owner_id != principal.user_id:
        raise HTTPException(status_code=403, detail="Cannot create records for another user")
    if not _owns_source(req.source_path, principal.user_id):
        raise HTTPException(status_code=403, detail="Source must be under your own storage prefix")
    try:
        lookup(req.effect)
    except UnknownEffectError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    record = TransformationRequest(
        source_path=req.source_path,
        effect=req.effect,
        user_id=principal.user_id,
    )
    return await repo.insert(record)


@router.post("/{request_id}/token", response_model=AccessToken, status_code=201)
async def issue_token(
    request_id: str,
    principal: Principal = Depends(get_principal),
    repo: TransformationRepository = Depends(get_repository),
    tokens: AccessTokenIssuer = Depends(get_token_issuer),
) -> AccessToken:
    await _owned_record(repo, request_id, principal)
    return tokens.issue(request_id)


# ------------------------------------------------------------------
# GET: query records
# ------------------------------------------------------------------


@router.get("", response_model=list[TransformationRequest])
async def list_transformations(
    principal: Principal = Depends(get_principal),
    repo: TransformationRepository = Depends(get_repository),
) -> list[TransformationRequest]:
    return await repo.list_for_owner(principal.user_id)


@router.get("/{request_id}", response_model=TransformationRequest)
async def get_transformation(
    request_id: str,
    principal: Principal = Depends(get_principal),
    repo: TransformationRepository = Depends(get_repository),
) -> TransformationRequest:
    return await _owned_record(repo, request_id, principal)


@router.get("/{request_id}/events")
async def stream_events(
    request_id: str,
    token: str = Depends(bearer_token),
    services: AppServices = Depends(get_services),
) -> StreamingResponse:
    """Server-sent events: one ``data:`` frame per record snapshot."""
    if not services.tokens.verify(token, request_id):
        raise HTTPException(status_code=403, detail="Token does not grant access to this record")
    try:
        await services.repository.get(request_id)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Transformation not found") from None

    async def _events() -> AsyncIterator[str]:
        async for record in services.repository.watch(request_id):
            yield f"data: {record.model_dump_json()}\n\n"

    return StreamingResponse(
        _events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


@router.get("/{request_id}/result", response_model=ResultResponse)
async def get_result(
    request_id: str,
    principal: Principal = Depends(get_principal),
    services: AppServices = Depends(get_services),
) -> ResultResponse:
    record = await _owned_record(services.repository, request_id, principal)
    if record.status != TransformationStatus.COMPLETED or record.transformed_path is None:
        raise HTTPException(
            status_code=409,
            detail=f"Transformation is {record.status.value}, no result yet",
        )

    try:
        url = await services.storage.signed_url(record.transformed_path, services.signed_url_ttl)
    except StorageError as e:
        logger.error("Signing result for %s failed: %s", request_id, e)
        raise HTTPException(status_code=502, detail=str(e)) from e

    return ResultResponse(
        url=url,
        filename=download_filename(PurePosixPath(record.transformed_path).name),
        expires_in=services.signed_url_ttl,
    )
