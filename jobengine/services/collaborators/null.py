"""Null collaborators - used when no service URL is configured."""

from jobengine.schemas.collaborators import (
    CollectionOptions,
    CollectionResult,
    ScoringOptions,
    ScoringResult,
)

from .base import BaseCollectionService, BaseScoringService, CollaboratorNotConfiguredError


class NullCollectionService(BaseCollectionService):
    """
    Collection stand-in that refuses to run.

    Raising lets the worker record the misconfiguration and fail the run
    instead of completing it with no work done.
    """

    provider_name = "null"

    async def execute(
        self,
        owner_id: str,
        brand_id: str,
        options: CollectionOptions,
    ) -> CollectionResult:
        raise CollaboratorNotConfiguredError("Collection service not configured")


class NullScoringService(BaseScoringService):
    """Scoring stand-in that refuses to run."""

    provider_name = "null"

    async def score(
        self,
        brand_id: str,
        owner_id: str,
        options: ScoringOptions,
    ) -> ScoringResult:
        raise CollaboratorNotConfiguredError("Scoring service not configured")
