"""Base repository with common CRUD operations."""
from typing import TypeVar, Generic, Type, Optional, List, Dict, Any, Iterable
from sqlalchemy.orm import Session
from uuid import UUID

from src.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseRepository(Generic[ModelType]):
    """Base repository with common database operations."""

    def __init__(self, model: Type[ModelType], db: Session):
        """
        Initialize repository.

        Args:
            model: SQLAlchemy model class
            db: Database session
        """
        self.model = model
        self.db = db

    def create(self, obj_in: Dict[str, Any], commit: bool = True) -> ModelType:
        """
        Create new record.

        Args:
            obj_in: Dictionary with object data
            commit: Commit immediately; otherwise only flush so the caller
                can group several writes in one transaction

        Returns:
            Created model instance
        """
        db_obj = self.model(**obj_in)
        self.db.add(db_obj)
        if commit:
            self.db.commit()
            self.db.refresh(db_obj)
        else:
            self.db.flush()
        return db_obj

    def get(self, id: Any) -> Optional[ModelType]:
        """
        Get record by ID.

        Args:
            id: Record primary key

        Returns:
            Model instance or None if not found
        """
        return self.db.get(self.model, id)

    def get_many(self, ids: Iterable[Any]) -> List[ModelType]:
        """
        Get records by ID, preserving the order of ``ids``.

        Unknown IDs are skipped.
        """
        ids = list(ids)
        if not ids:
            return []
        records = self.db.query(self.model).filter(self.model.id.in_(ids)).all()
        by_id = {record.id: record for record in records}
        return [by_id[i] for i in ids if i in by_id]

    def update(self, id: Any, obj_in: Dict[str, Any], commit: bool = True) -> Optional[ModelType]:
        """
        Update record.

        Args:
            id: Record primary key
            obj_in: Dictionary with fields to update

        Returns:
            Updated model instance or None if not found
        """
        db_obj = self.get(id)
        if not db_obj:
            return None

        for field, value in obj_in.items():
            if hasattr(db_obj, field):
                setattr(db_obj, field, value)

        if commit:
            self.db.commit()
            self.db.refresh(db_obj)
        else:
            self.db.flush()
        return db_obj

    def delete(self, id: Any, commit: bool = True) -> bool:
        """
        Delete record.

        Returns:
            True if successful, False if record not found
        """
        db_obj = self.get(id)
        if not db_obj:
            return False

        self.db.delete(db_obj)
        if commit:
            self.db.commit()
        else:
            self.db.flush()
        return True


def as_uuid(value: Any) -> UUID:
    """Coerce a string or UUID into a UUID."""
    return value if isinstance(value, UUID) else UUID(str(value))
