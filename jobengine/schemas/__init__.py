from jobengine.schemas.collaborators import (
    CollaboratorError,
    CollectionOptions,
    CollectionResult,
    ScoringOptions,
    ScoringResult,
)
from jobengine.schemas.job import (
    EnqueuedRunResponse,
    FailureRetryRequest,
    JobRunResponse,
    JobStatsResponse,
    LoopScheduleResponse,
    ScheduleCreate,
    ScheduleOneOff,
    ScheduleResponse,
    ScheduleUpdate,
    StuckExecutionStatsResponse,
)

__all__ = [
    "CollaboratorError",
    "CollectionOptions",
    "CollectionResult",
    "ScoringOptions",
    "ScoringResult",
    "ScheduleCreate",
    "ScheduleUpdate",
    "ScheduleOneOff",
    "FailureRetryRequest",
    "ScheduleResponse",
    "JobRunResponse",
    "EnqueuedRunResponse",
    "JobStatsResponse",
    "StuckExecutionStatsResponse",
    "LoopScheduleResponse",
]
