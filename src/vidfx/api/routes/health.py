"""Health check and catalog endpoints."""

from fastapi import APIRouter
from pydantic import BaseModel

from vidfx.api.schemas import EffectItem
from vidfx.effects import CATALOG_VERSION, list_effects

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    catalog_version: int


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Return the health status of the application."""
    from vidfx import __version__

    return HealthResponse(status="healthy", version=__version__, catalog_version=CATALOG_VERSION)


@router.get("/api/v1/effects", response_model=list[EffectItem])
async def get_effects() -> list[EffectItem]:
    return [EffectItem(id=effect_id, label=label) for effect_id, label in list_effects()]
