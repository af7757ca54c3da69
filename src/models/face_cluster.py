"""Face cluster models (hypothesised identities and their members)."""
from sqlalchemy import Column, String, Integer, Float, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
import uuid

from src.db.base import Base
from .base import TimestampMixin


class FaceCluster(Base, TimestampMixin):
    """
    Group of face detections believed to show the same person.

    appearance_count always mirrors the number of member rows; it is
    recomputed from membership by FaceClusterRepository and never
    incremented in place.
    """

    __tablename__ = 'face_clusters'

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    group_id = Column(Uuid(as_uuid=True), ForeignKey('groups.id', ondelete='CASCADE'), nullable=False, index=True)

    # Human-assigned display name
    cluster_name = Column(String(50), nullable=True)

    appearance_count = Column(Integer, nullable=False, default=0)

    # Average intra-cluster similarity normalised to [0, 1]
    confidence = Column(Float, nullable=False, default=0.0)

    representative_face_detection_id = Column(
        Uuid(as_uuid=True),
        ForeignKey('face_detections.id', ondelete='SET NULL'),
        nullable=True,
    )

    # Grouping job that created the cluster
    job_id = Column(String(64), nullable=True, index=True)

    group = relationship('Group', back_populates='clusters')
    members = relationship(
        'FaceClusterMember',
        back_populates='cluster',
        cascade='all',
        order_by='FaceClusterMember.created_at',
    )
    representative_face = relationship('FaceDetection', foreign_keys=[representative_face_detection_id])

    def __repr__(self) -> str:
        return f'<FaceCluster(id={self.id}, appearances={self.appearance_count}, confidence={self.confidence})>'


class FaceClusterMember(Base, TimestampMixin):
    """Join row between a cluster and one face detection."""

    __tablename__ = 'face_cluster_members'
    __table_args__ = (
        UniqueConstraint('cluster_id', 'face_detection_id', name='uq_cluster_member'),
        # A detection belongs to at most one cluster
        UniqueConstraint('face_detection_id', name='uq_member_face_detection'),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4, index=True)
    cluster_id = Column(Uuid(as_uuid=True), ForeignKey('face_clusters.id', ondelete='CASCADE'), nullable=False, index=True)
    face_detection_id = Column(Uuid(as_uuid=True), ForeignKey('face_detections.id', ondelete='CASCADE'), nullable=False)
    confidence = Column(Float, nullable=False, default=0.0)

    cluster = relationship('FaceCluster', back_populates='members')
    face_detection = relationship('FaceDetection', back_populates='cluster_membership')

    def __repr__(self) -> str:
        return f'<FaceClusterMember(cluster={self.cluster_id}, face={self.face_detection_id})>'
