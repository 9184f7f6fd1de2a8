"""Request/response shapes exchanged with collaborator services.

Collaborators are separate services; their JSON uses camelCase, so every
model accepts both camelCase and snake_case and serializes with aliases.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CollaboratorModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CollaboratorError(CollaboratorModel):
    """A single error reported by (or about) a collaborator call."""

    error: str
    operation: str | None = None
    work_item_id: str | None = None


class CollectionOptions(CollaboratorModel):
    """Options forwarded to the data-collection service."""

    collectors: list[str] | None = None
    locale: str | None = None
    country: str | None = None
    since: datetime | None = None
    specific_work_ids: list[str] | None = None
    suppress_scoring: bool = False


class CollectionResult(CollaboratorModel):
    """Outcome of a data-collection call."""

    items_processed: int = 0
    results_produced: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[CollaboratorError] = Field(default_factory=list)

    def metrics(self) -> dict[str, int]:
        return {
            "items_processed": self.items_processed,
            "results_produced": self.results_produced,
            "succeeded": self.succeeded,
            "failed": self.failed,
        }


class ScoringOptions(CollaboratorModel):
    """Options forwarded to the scoring service."""

    since: datetime | None = None
    position_limit: int | None = None
    sentiment_limit: int | None = None
    parallel: bool = False


class ScoringResult(CollaboratorModel):
    """Outcome of a scoring call."""

    positions_processed: int = 0
    sentiments_processed: int = 0
    competitor_sentiments_processed: int = 0
    citations_processed: int = 0
    errors: list[CollaboratorError] = Field(default_factory=list)

    def metrics(self) -> dict[str, int]:
        return {
            "positions_processed": self.positions_processed,
            "sentiments_processed": self.sentiments_processed,
            "competitor_sentiments_processed": self.competitor_sentiments_processed,
            "citations_processed": self.citations_processed,
        }
