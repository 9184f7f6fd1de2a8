"""Collaborator services the Worker dispatches to."""

from jobengine.config import get_settings

from .base import BaseCollectionService, BaseScoringService, CollaboratorNotConfiguredError
from .http import HttpCollectionService, HttpScoringService
from .null import NullCollectionService, NullScoringService

__all__ = [
    "BaseCollectionService",
    "BaseScoringService",
    "CollaboratorNotConfiguredError",
    "HttpCollectionService",
    "HttpScoringService",
    "NullCollectionService",
    "NullScoringService",
    "get_collection_service",
    "get_scoring_service",
    "reset_collaborators",
]

_collection_instance: BaseCollectionService | None = None
_scoring_instance: BaseScoringService | None = None


def get_collection_service() -> BaseCollectionService:
    """
    Get the configured collection service.

    Falls back to NullCollectionService if no URL is configured.
    """
    global _collection_instance
    if _collection_instance is not None:
        return _collection_instance

    settings = get_settings()

    if not settings.collection_service_url:
        _collection_instance = NullCollectionService()
    else:
        _collection_instance = HttpCollectionService(
            base_url=settings.collection_service_url,
            api_key=settings.collaborator_api_key,
            timeout_seconds=settings.collaborator_timeout_seconds,
            max_attempts=settings.collaborator_max_attempts,
        )

    return _collection_instance


def get_scoring_service() -> BaseScoringService:
    """Get the configured scoring service, NullScoringService if unset."""
    global _scoring_instance
    if _scoring_instance is not None:
        return _scoring_instance

    settings = get_settings()

    if not settings.scoring_service_url:
        _scoring_instance = NullScoringService()
    else:
        _scoring_instance = HttpScoringService(
            base_url=settings.scoring_service_url,
            api_key=settings.collaborator_api_key,
            timeout_seconds=settings.collaborator_timeout_seconds,
            max_attempts=settings.collaborator_max_attempts,
        )

    return _scoring_instance


def reset_collaborators() -> None:
    """Reset the collaborator instances. Useful for testing."""
    global _collection_instance, _scoring_instance
    _collection_instance = None
    _scoring_instance = None
