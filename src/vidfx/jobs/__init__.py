"""Job management for the vidfx API."""

from vidfx.jobs.manager import JobManager
from vidfx.jobs.repository import TransformationRepository
from vidfx.jobs.tokens import AccessTokenIssuer

__all__ = ["AccessTokenIssuer", "JobManager", "TransformationRepository"]
