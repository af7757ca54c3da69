"""Domain exceptions for the face grouping pipeline."""


class PipelineError(Exception):
    """Base class for pipeline errors."""
    pass


class JobSetupError(PipelineError):
    """Job cannot start (missing group, uncreatable collection, no media)."""
    pass


class InvalidJobPayloadError(JobSetupError, ValueError):
    """Enqueue request carries an unusable payload."""
    pass


class InvalidJobTransitionError(PipelineError):
    """Attempted job status change not allowed by the state machine."""

    def __init__(self, job_id: str, current: str, requested: str):
        self.job_id = job_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Job {job_id} cannot move from {current} to {requested}"
        )


class JobCancelledError(PipelineError):
    """Raised at a stage boundary when cancellation was requested."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} was cancelled")


class NotFoundError(PipelineError):
    """Requested entity does not exist."""
    pass


class JobNotFoundError(NotFoundError):
    pass


class ClusterNotFoundError(NotFoundError):
    pass


class ClusterOperationError(PipelineError, ValueError):
    """Invalid cluster merge / removal request."""
    pass


class VisionServiceError(PipelineError):
    """Non-retryable failure from the face recognition vendor."""
    pass


class TransientVisionError(VisionServiceError):
    """Throttling or temporary vendor failure; retried at the job level."""
    pass
