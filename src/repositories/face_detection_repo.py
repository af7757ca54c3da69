"""Face detection repository."""
from typing import Iterable, List
from uuid import UUID

from sqlalchemy.orm import Session

from src.models.face_detection import FaceDetection
from src.models.media import Media
from .base import BaseRepository


class FaceDetectionRepository(BaseRepository[FaceDetection]):
    """Repository for FaceDetection rows."""

    def __init__(self, db: Session):
        super().__init__(FaceDetection, db)

    def find_unprocessed(self, ids: Iterable[UUID]) -> List[FaceDetection]:
        """Return the not-yet-grouped detections among ``ids``, in input order."""
        return [face for face in self.get_many(ids) if not face.processed]

    def find_by_media(self, media_id: UUID) -> List[FaceDetection]:
        return (
            self.db.query(FaceDetection)
            .filter(FaceDetection.media_id == media_id)
            .all()
        )

    def find_indexed_by_group(self, group_id: UUID) -> List[FaceDetection]:
        """Every detection of the group that has a vendor face ID."""
        return (
            self.db.query(FaceDetection)
            .join(Media, FaceDetection.media_id == Media.id)
            .filter(
                Media.group_id == group_id,
                FaceDetection.rekognition_face_id.isnot(None),
            )
            .order_by(FaceDetection.created_at, FaceDetection.id)
            .all()
        )

    def find_by_vendor_ids(self, group_id: UUID, vendor_face_ids: Iterable[str]) -> List[FaceDetection]:
        vendor_face_ids = list(vendor_face_ids)
        if not vendor_face_ids:
            return []
        return (
            self.db.query(FaceDetection)
            .join(Media, FaceDetection.media_id == Media.id)
            .filter(
                Media.group_id == group_id,
                FaceDetection.rekognition_face_id.in_(vendor_face_ids),
            )
            .all()
        )

    def mark_processed(self, ids: Iterable[UUID], commit: bool = True, processed: bool = True) -> int:
        ids = list(ids)
        if not ids:
            return 0
        updated = (
            self.db.query(FaceDetection)
            .filter(FaceDetection.id.in_(ids))
            .update({FaceDetection.processed: processed}, synchronize_session='fetch')
        )
        if commit:
            self.db.commit()
        else:
            self.db.flush()
        return updated

    def delete_by_media(self, media_id: UUID, commit: bool = True) -> int:
        faces = self.find_by_media(media_id)
        for face in faces:
            self.db.delete(face)
        if commit:
            self.db.commit()
        else:
            self.db.flush()
        return len(faces)
