"""Abstract interfaces for the services the Worker dispatches to."""

from abc import ABC, abstractmethod

from jobengine.schemas.collaborators import (
    CollectionOptions,
    CollectionResult,
    ScoringOptions,
    ScoringResult,
)


class CollaboratorNotConfiguredError(RuntimeError):
    """No service URL is configured for a collaborator."""


class BaseCollectionService(ABC):
    """Runs a brand's work items against answer-engine collectors."""

    provider_name: str = "unknown"

    @abstractmethod
    async def execute(
        self,
        owner_id: str,
        brand_id: str,
        options: CollectionOptions,
    ) -> CollectionResult:
        """
        Collect answers for a brand.

        Args:
            owner_id: Owner (customer) the brand belongs to
            brand_id: Brand whose work items are executed
            options: Collector selection, locale and retry scope

        Returns:
            Counters plus per-item errors; raising means nothing was
            collected at all
        """
        pass


class BaseScoringService(ABC):
    """Scores collected answers (positions, sentiment, citations)."""

    provider_name: str = "unknown"

    @abstractmethod
    async def score(
        self,
        brand_id: str,
        owner_id: str,
        options: ScoringOptions,
    ) -> ScoringResult:
        """
        Score a brand's collected answers.

        Args:
            brand_id: Brand to score
            owner_id: Owner (customer) the brand belongs to
            options: Time window, limits and parallelism

        Returns:
            Counters plus per-step errors
        """
        pass
