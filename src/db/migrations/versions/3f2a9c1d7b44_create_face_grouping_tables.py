"""Create face grouping tables

Revision ID: 3f2a9c1d7b44
Revises:
Create Date: 2026-10-17 09:12:40.118204

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '3f2a9c1d7b44'
down_revision = None
branch_labels = None
depends_on = None

JOB_TYPES = ('DETECTION', 'GROUPING', 'CLEANUP')
JOB_STATUSES = ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', 'CANCELLED')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        'groups',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('collection_id', sa.String(length=255), nullable=True, unique=True),
        sa.Column('storage_used', sa.BigInteger(), nullable=False, server_default='0'),
        *_timestamps(),
    )
    op.create_index('ix_groups_id', 'groups', ['id'])
    op.create_index('ix_groups_created_at', 'groups', ['created_at'])

    op.create_table(
        'media',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('group_id', sa.Uuid(), sa.ForeignKey('groups.id', ondelete='CASCADE'), nullable=False),
        sa.Column('s3_key', sa.String(length=512), nullable=False),
        sa.Column('s3_bucket', sa.String(length=255), nullable=False),
        sa.Column('filename', sa.String(length=255), nullable=True),
        sa.Column('content_type', sa.String(length=100), nullable=False, server_default='image/jpeg'),
        sa.Column('file_size', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index('ix_media_id', 'media', ['id'])
    op.create_index('ix_media_group_id', 'media', ['group_id'])
    op.create_index('ix_media_s3_key', 'media', ['s3_key'], unique=True)
    op.create_index('ix_media_processed', 'media', ['processed'])
    op.create_index('ix_media_created_at', 'media', ['created_at'])

    op.create_table(
        'face_detections',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('media_id', sa.Uuid(), sa.ForeignKey('media.id', ondelete='CASCADE'), nullable=False),
        sa.Column('rekognition_face_id', sa.String(length=255), nullable=True),
        sa.Column('bounding_box', sa.JSON(), nullable=False),
        sa.Column('confidence', sa.Float(), nullable=False),
        sa.Column('quality', sa.JSON(), nullable=True),
        sa.Column('pose', sa.JSON(), nullable=True),
        sa.Column('quality_score', sa.Integer(), nullable=True),
        sa.Column('thumbnail_s3_key', sa.String(length=512), nullable=True),
        sa.Column('processed', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index('ix_face_detections_id', 'face_detections', ['id'])
    op.create_index('ix_face_detections_media_id', 'face_detections', ['media_id'])
    op.create_index('ix_face_detections_rekognition_face_id', 'face_detections', ['rekognition_face_id'])
    op.create_index('ix_face_detections_processed', 'face_detections', ['processed'])
    op.create_index('ix_face_detections_created_at', 'face_detections', ['created_at'])

    op.create_table(
        'face_clusters',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('group_id', sa.Uuid(), sa.ForeignKey('groups.id', ondelete='CASCADE'), nullable=False),
        sa.Column('cluster_name', sa.String(length=50), nullable=True),
        sa.Column('appearance_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('confidence', sa.Float(), nullable=False, server_default='0'),
        sa.Column(
            'representative_face_detection_id',
            sa.Uuid(),
            sa.ForeignKey('face_detections.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('job_id', sa.String(length=64), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_face_clusters_id', 'face_clusters', ['id'])
    op.create_index('ix_face_clusters_group_id', 'face_clusters', ['group_id'])
    op.create_index('ix_face_clusters_job_id', 'face_clusters', ['job_id'])
    op.create_index('ix_face_clusters_created_at', 'face_clusters', ['created_at'])

    op.create_table(
        'face_cluster_members',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('cluster_id', sa.Uuid(), sa.ForeignKey('face_clusters.id', ondelete='CASCADE'), nullable=False),
        sa.Column(
            'face_detection_id',
            sa.Uuid(),
            sa.ForeignKey('face_detections.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('confidence', sa.Float(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.UniqueConstraint('cluster_id', 'face_detection_id', name='uq_cluster_member'),
        sa.UniqueConstraint('face_detection_id', name='uq_member_face_detection'),
    )
    op.create_index('ix_face_cluster_members_id', 'face_cluster_members', ['id'])
    op.create_index('ix_face_cluster_members_cluster_id', 'face_cluster_members', ['cluster_id'])
    op.create_index('ix_face_cluster_members_created_at', 'face_cluster_members', ['created_at'])

    op.create_table(
        'jobs',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('job_type', sa.Enum(*JOB_TYPES, name='jobtype'), nullable=False),
        sa.Column('collection_id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.Enum(*JOB_STATUSES, name='jobstatus'), nullable=False),
        sa.Column('progress', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('result', sa.JSON(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('cancel_requested', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('triggered_by_job_id', sa.String(length=64), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_jobs_id', 'jobs', ['id'])
    op.create_index('ix_jobs_job_type', 'jobs', ['job_type'])
    op.create_index('ix_jobs_collection_id', 'jobs', ['collection_id'])
    op.create_index('ix_jobs_status', 'jobs', ['status'])
    op.create_index('ix_jobs_created_at', 'jobs', ['created_at'])


def downgrade() -> None:
    op.drop_table('jobs')
    op.drop_table('face_cluster_members')
    op.drop_table('face_clusters')
    op.drop_table('face_detections')
    op.drop_table('media')
    op.drop_table('groups')
    sa.Enum(name='jobstatus').drop(op.get_bind(), checkfirst=True)
    sa.Enum(name='jobtype').drop(op.get_bind(), checkfirst=True)
