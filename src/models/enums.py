"""Enums for database models."""
import enum


class JobType(str, enum.Enum):
    """Pipeline stage a job runs."""
    DETECTION = "DETECTION"
    GROUPING = "GROUPING"
    CLEANUP = "CLEANUP"


class JobStatus(str, enum.Enum):
    """Job lifecycle status."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_JOB_STATUSES


TERMINAL_JOB_STATUSES = frozenset({
    JobStatus.COMPLETED,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
})

# PENDING -> PROCESSING -> {COMPLETED, FAILED}; PENDING|PROCESSING -> CANCELLED
JOB_TRANSITIONS = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.CANCELLED}),
    JobStatus.PROCESSING: frozenset({
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    }),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class SingletonPolicy(str, enum.Enum):
    """What the grouping stage does with faces that matched nobody."""
    discard = "discard"
    persist = "persist"
