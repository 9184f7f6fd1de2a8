from jobengine.models.base import Base
from jobengine.models.execution import CollectorResult, Execution, ExecutionStatus
from jobengine.models.job_run import JobRun, RunStatus
from jobengine.models.schedule import JobType, Schedule

__all__ = [
    "Base",
    "Schedule",
    "JobType",
    "JobRun",
    "RunStatus",
    "Execution",
    "ExecutionStatus",
    "CollectorResult",
]
