from celery import Celery
from celery.schedules import crontab

from src.app.config import settings
from src.models.enums import JobType

# Task name and queue per job type; deploy one worker pool per queue:
#   celery -A src.tasks.celery_app worker -Q face_detection --concurrency 2
#   celery -A src.tasks.celery_app worker -Q face_grouping --concurrency 1
#   celery -A src.tasks.celery_app worker -Q cleanup --concurrency 1
JOB_TASKS = {
    JobType.DETECTION: ('tasks.detect_faces', 'face_detection'),
    JobType.GROUPING: ('tasks.group_faces', 'face_grouping'),
    JobType.CLEANUP: ('tasks.cleanup_media', 'cleanup'),
}

celery_app = Celery(
    'face_grouping',
    include=[
        'src.tasks.workers.face_processor',
        'src.tasks.workers.cleanup_worker',
    ]
)

celery_app.conf.update(
    broker_url=settings.CELERY_BROKER_URL,
    result_backend=settings.CELERY_RESULT_BACKEND,
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
    task_track_started=True,
    task_time_limit=settings.JOB_TIME_LIMIT_SECONDS,
    # Job rows are the durable record; only ack once a task finished
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_routes={
        name: {'queue': queue} for name, queue in JOB_TASKS.values()
    },
    beat_schedule={
        'reap-finished-jobs': {
            'task': 'tasks.reap_finished_jobs',
            'schedule': crontab(minute=0),
            'options': {'queue': 'cleanup'},
        },
    },
)


class CeleryDispatcher:
    """Sends job ids to their stage queue. The Celery task id is the job id."""

    def __init__(self, app: Celery = celery_app):
        self.app = app

    def dispatch(self, job_type: JobType, job_id: str) -> None:
        name, queue = JOB_TASKS[job_type]
        self.app.send_task(name, args=[job_id], task_id=job_id, queue=queue)

    def revoke(self, job_id: str) -> None:
        self.app.control.revoke(job_id)
