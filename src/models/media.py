"""Media model."""
from sqlalchemy import Column, String, BigInteger, Boolean, ForeignKey, Uuid
from sqlalchemy.orm import relationship
import uuid

from src.db.base import Base
from .base import TimestampMixin


class Media(Base, TimestampMixin):
    """Uploaded photo belonging to a group."""

    __tablename__ = 'media'

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    group_id = Column(Uuid(as_uuid=True), ForeignKey('groups.id', ondelete='CASCADE'), nullable=False, index=True)

    # Storage info
    s3_key = Column(String(512), nullable=False, unique=True, index=True)
    s3_bucket = Column(String(255), nullable=False)
    filename = Column(String(255), nullable=True)
    content_type = Column(String(100), nullable=False, default='image/jpeg')
    file_size = Column(BigInteger, nullable=False, default=0)

    # Set once face detection has run over this item
    processed = Column(Boolean, nullable=False, default=False, index=True)

    group = relationship('Group', back_populates='media')
    face_detections = relationship('FaceDetection', back_populates='media', cascade='all')

    def __repr__(self) -> str:
        return f'<Media(id={self.id}, s3_key={self.s3_key}, processed={self.processed})>'
