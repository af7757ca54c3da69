"""Group and media repositories."""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from src.models.group import Group
from src.models.media import Media
from .base import BaseRepository


class GroupRepository(BaseRepository[Group]):
    """Repository for groups (collections) and their storage counters."""

    def __init__(self, db: Session):
        super().__init__(Group, db)

    def set_collection(self, group_id: UUID, collection_id: str) -> Optional[Group]:
        return self.update(group_id, {'collection_id': collection_id})

    def update_storage_used(self, group_id: UUID, delta: int, commit: bool = True) -> None:
        """Apply a signed byte delta to the group's storage counter (floored at zero)."""
        group = self.get(group_id)
        if not group:
            return
        group.storage_used = max((group.storage_used or 0) + delta, 0)
        if commit:
            self.db.commit()
        else:
            self.db.flush()


class MediaRepository(BaseRepository[Media]):
    """Repository for media rows."""

    def __init__(self, db: Session):
        super().__init__(Media, db)

    def find_older_than(self, group_id: UUID, cutoff: datetime) -> List[Media]:
        return (
            self.db.query(Media)
            .filter(Media.group_id == group_id, Media.created_at < cutoff)
            .order_by(Media.created_at)
            .all()
        )

    def mark_processed(self, media: Media, commit: bool = True) -> None:
        media.processed = True
        if commit:
            self.db.commit()
        else:
            self.db.flush()
