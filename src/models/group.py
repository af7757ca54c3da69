"""Group model (a shared photo collection)."""
from sqlalchemy import Column, String, BigInteger, Uuid
from sqlalchemy.orm import relationship
import uuid

from src.db.base import Base
from .base import TimestampMixin


class Group(Base, TimestampMixin):
    """Shared collection whose faces are clustered together."""

    __tablename__ = 'groups'

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    name = Column(String(255), nullable=False)

    # Vendor face index for this group (created lazily by the detection stage)
    collection_id = Column(String(255), nullable=True, unique=True)

    # Bytes of media currently stored for the group
    storage_used = Column(BigInteger, nullable=False, default=0)

    media = relationship('Media', back_populates='group', cascade='all')
    clusters = relationship('FaceCluster', back_populates='group', cascade='all')

    def __repr__(self) -> str:
        return f'<Group(id={self.id}, collection_id={self.collection_id})>'
