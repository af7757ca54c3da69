"""Dependencies for API endpoints."""
from uuid import UUID

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from src.core.cache import CacheBackend, cache
from src.db.base import get_db
from src.models.group import Group
from src.repositories.group_repo import GroupRepository
from src.services.pipeline.orchestrator import JobOrchestrator
from src.tasks.celery_app import CeleryDispatcher


def get_dispatcher() -> CeleryDispatcher:
    return CeleryDispatcher()


def get_orchestrator(
    db: Session = Depends(get_db),
    dispatcher=Depends(get_dispatcher),
) -> JobOrchestrator:
    return JobOrchestrator(db, dispatcher=dispatcher)


def get_cache() -> CacheBackend:
    return cache


async def get_group_or_404(group_id: UUID, db: Session = Depends(get_db)) -> Group:
    group = GroupRepository(db).get(group_id)
    if not group:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Group {group_id} not found"
        )
    return group
