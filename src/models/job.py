"""Pipeline job model."""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, JSON, Enum as SQLEnum

from src.db.base import Base
from .base import TimestampMixin
from .enums import JobType, JobStatus, JOB_TRANSITIONS


class Job(Base, TimestampMixin):
    """
    One invocation of a pipeline stage.

    The row id doubles as the Celery task id so a queued message can be
    revoked by job id.
    """

    __tablename__ = 'jobs'

    id = Column(String(64), primary_key=True, index=True)
    job_type = Column(SQLEnum(JobType), nullable=False, index=True)
    collection_id = Column(String(64), nullable=False, index=True)

    status = Column(SQLEnum(JobStatus), nullable=False, default=JobStatus.PENDING, index=True)
    progress = Column(Integer, nullable=False, default=0)

    payload = Column(JSON, nullable=False, default=dict)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)

    # Cooperative cancellation flag, polled by the worker at stage boundaries
    cancel_requested = Column(Boolean, nullable=False, default=False)
    attempts = Column(Integer, nullable=False, default=0)

    triggered_by_job_id = Column(String(64), nullable=True)

    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)

    @property
    def is_terminal(self) -> bool:
        return JobStatus(self.status).is_terminal

    def can_transition_to(self, status: JobStatus) -> bool:
        return status in JOB_TRANSITIONS[JobStatus(self.status)]

    def __repr__(self) -> str:
        return f'<Job(id={self.id}, type={self.job_type}, status={self.status}, progress={self.progress})>'
