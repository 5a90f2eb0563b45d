"""Request and response schemas for the vidfx API."""

from __future__ import annotations

from pydantic import BaseModel, Field


# ------------------------------------------------------------------
# Requests
# ------------------------------------------------------------------


class TransformationCreateRequest(BaseModel):
    source_path: str = Field(..., description="Storage path of the uploaded original")
    effect: str = Field(..., description="Effect catalog key")
    owner_id: str = Field(..., description="User the record belongs to")


# ------------------------------------------------------------------
# Responses
# ------------------------------------------------------------------


class ResultResponse(BaseModel):
    url: str = Field(..., description="Time-limited URL of the processed video")
    filename: str = Field(..., description="Suggested download file name")
    expires_in: int = Field(..., description="URL lifetime in seconds")


class EffectItem(BaseModel):
    id: str
    label: str
