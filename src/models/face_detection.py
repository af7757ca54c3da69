"""Face detection model."""
from sqlalchemy import Column, String, Float, Integer, ForeignKey, Boolean, JSON, Uuid
from sqlalchemy.orm import relationship
import uuid

from src.db.base import Base
from .base import TimestampMixin


class FaceDetection(Base, TimestampMixin):
    """One face found in one media item and indexed with the vision vendor."""

    __tablename__ = 'face_detections'

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    media_id = Column(Uuid(as_uuid=True), ForeignKey('media.id', ondelete='CASCADE'), nullable=False, index=True)

    # Opaque vendor face ID, stored verbatim
    rekognition_face_id = Column(String(255), nullable=True, index=True)

    # Image-relative ratios in [0, 1]: {x, y, width, height}
    bounding_box = Column(JSON, nullable=False)

    # Detector confidence (0-100)
    confidence = Column(Float, nullable=False)

    # Vendor metadata: {brightness, sharpness} and {roll, yaw, pitch}
    quality = Column(JSON, nullable=True)
    pose = Column(JSON, nullable=True)
    quality_score = Column(Integer, nullable=True)

    thumbnail_s3_key = Column(String(512), nullable=True)

    # Set once a grouping pass has consumed this detection
    processed = Column(Boolean, nullable=False, default=False, index=True)

    media = relationship('Media', back_populates='face_detections')
    cluster_membership = relationship(
        'FaceClusterMember',
        back_populates='face_detection',
        uselist=False,
        cascade='all',
    )

    def __repr__(self) -> str:
        return f'<FaceDetection(id={self.id}, face_id={self.rekognition_face_id}, processed={self.processed})>'
