"""FastAPI dependencies."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Depends, FastAPI, Header, HTTPException, Request

from vidfx.jobs.manager import JobManager
from vidfx.jobs.repository import TransformationRepository
from vidfx.jobs.tokens import AccessTokenIssuer
from vidfx.models.processing import Principal
from vidfx.services.interfaces import IObjectStorage

# bearer token -> principal, None when unknown
PrincipalResolver = Callable[[str], Principal | None]


@dataclass
class AppServices:
    """Backend components shared by the routes."""

    repository: TransformationRepository
    job_manager: JobManager
    tokens: AccessTokenIssuer
    storage: IObjectStorage
    resolve_principal: PrincipalResolver
    signed_url_ttl: int = 3600


def static_token_resolver(api_tokens: dict[str, str]) -> PrincipalResolver:
    """Resolve principals from a fixed ``token -> user id`` map."""

    def _resolve(token: str) -> Principal | None:
        user_id = api_tokens.get(token)
        if user_id is None:
            return None
        return Principal(user_id=user_id, access_token=token)

    return _resolve


def init_services(app: FastAPI, services: AppServices) -> AppServices:
    """Attach the service container to an app (called by create_app)."""
    app.state.services = services
    return services


def get_services(request: Request) -> AppServices:
    """Dependency that provides the service container."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("Services not initialized, call init_services() first")
    return services


def get_repository(services: AppServices = Depends(get_services)) -> TransformationRepository:
    return services.repository


def get_token_issuer(services: AppServices = Depends(get_services)) -> AccessTokenIssuer:
    return services.tokens


def get_storage(services: AppServices = Depends(get_services)) -> IObjectStorage:
    return services.storage


def bearer_token(authorization: str | None = Header(None)) -> str:
    """Extract the bearer token from the Authorization header."""
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Expected a Bearer token")
    return token.strip()


def get_principal(
    token: str = Depends(bearer_token),
    services: AppServices = Depends(get_services),
) -> Principal:
    """Dependency that resolves the signed-in principal."""
    principal = services.resolve_principal(token)
    if principal is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return principal
