"""
Pipeline Stages
===============

Stage bodies for DETECTION, GROUPING and CLEANUP jobs.

Stages receive every collaborator through their constructor (session via
the JobContext, vision gateway, enhancer, object store, cache) so they run
the same under Celery and in tests. Job status bookkeeping lives in
JobOrchestrator.execute; a stage only reports progress, checks for
cancellation and returns its result payload.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
import logging
import time

from sqlalchemy.orm import Session

from src.app.config import settings
from src.core.cache import CacheBackend, invalidate_group_cache
from src.core.exceptions import (
    InvalidJobPayloadError,
    JobSetupError,
    TransientVisionError,
    VisionServiceError,
)
from src.models.enums import JobType, SingletonPolicy
from src.models.face_detection import FaceDetection
from src.models.group import Group
from src.models.media import Media
from src.repositories.base import as_uuid
from src.repositories.face_cluster_repo import FaceClusterRepository
from src.repositories.face_detection_repo import FaceDetectionRepository
from src.repositories.group_repo import GroupRepository, MediaRepository
from src.services.face.clustering import ExistingCluster, FaceGroup, SimilarityClusterer
from src.services.face.enhancement import FaceEnhancer
from src.services.face.quality import calculate_quality_score
from src.services.pipeline.orchestrator import JobContext
from src.services.storage.s3 import S3Service, S3ServiceError, thumbnail_key
from src.services.vision.base import FaceRecord, VisionGateway
from src.services.vision.rekognition import collection_id_for_group

logger = logging.getLogger(__name__)


class Stage:
    """Body of one job type."""

    job_type: JobType

    def run(self, ctx: JobContext) -> Dict[str, Any]:
        raise NotImplementedError

    @staticmethod
    def _load_group(db: Session, payload: Dict[str, Any]) -> Group:
        try:
            group_id = as_uuid(payload['group_id'])
        except (KeyError, ValueError) as e:
            raise InvalidJobPayloadError(f"Invalid group_id in payload: {e}")
        group = GroupRepository(db).get(group_id)
        if not group:
            raise JobSetupError(f"Group {group_id} not found")
        return group


# ============================================================================
# Detection
# ============================================================================

class DetectionStage(Stage):
    """
    Detect, enhance and index the faces of a batch of media items.

    Progress: 0-10% setup, 10-90% per-image loop, 90-100% finalization.
    A failing media item is logged and skipped; the job only fails on
    setup errors. Throttling errors abort the attempt so the job is
    retried; media already marked processed are not detected again.
    """

    job_type = JobType.DETECTION

    def __init__(
        self,
        vision: VisionGateway,
        enhancer: FaceEnhancer,
        storage: S3Service,
        cache: Optional[CacheBackend] = None,
        image_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.vision = vision
        self.enhancer = enhancer
        self.storage = storage
        self.cache = cache
        self.image_delay = settings.DETECTION_IMAGE_DELAY_SECONDS if image_delay is None else image_delay
        self._sleep = sleep

    def run(self, ctx: JobContext) -> Dict[str, Any]:
        db = ctx.db
        payload = ctx.payload
        group = self._load_group(db, payload)
        collection_id = self._ensure_collection(db, group)
        ctx.progress(5)

        media_repo = MediaRepository(db)
        media_items = [
            m for m in media_repo.get_many(as_uuid(i) for i in payload.get('media_ids', []))
            if m.group_id == group.id
        ]
        if not media_items:
            raise JobSetupError(f"No media found for job {ctx.job.id} in group {group.id}")
        ctx.progress(10)

        total = len(media_items)
        face_detection_ids: List[str] = []
        media_processed = 0
        media_failed = 0

        logger.info(f"[Face Detection] Job {ctx.job.id}: {total} media items in {collection_id}")

        for index, media in enumerate(media_items):
            ctx.checkpoint()
            logger.info(f"[Face Detection] Processing media {media.id} ({index + 1}/{total})")

            try:
                if media.processed:
                    detections = FaceDetectionRepository(db).find_by_media(media.id)
                else:
                    detections = self._process_media(db, group, collection_id, media)
                face_detection_ids.extend(str(d.id) for d in detections)
                media_processed += 1
            except TransientVisionError:
                db.rollback()
                raise
            except Exception as e:
                db.rollback()
                media_failed += 1
                logger.error(f"[Face Detection] Media {media.id} failed: {e}", exc_info=True)

            ctx.progress(10 + (index + 1) / total * 80)
            if self.image_delay and index < total - 1:
                self._sleep(self.image_delay)

        invalidate_group_cache(group.id, media=True, clusters=False, backend=self.cache)
        ctx.progress(95)

        grouping_job_id = None
        if face_detection_ids:
            orchestrator = ctx.orchestrator
            grouping_job_id = orchestrator.enqueue(
                JobType.GROUPING,
                {'group_id': str(group.id), 'face_detection_ids': face_detection_ids},
                triggered_by_job_id=ctx.job.id,
                defer_dispatch=True,
            )
            ctx.after_commit.append(lambda: orchestrator.dispatch(grouping_job_id))

        logger.info(
            f"[Face Detection] Job {ctx.job.id} done: {media_processed} media processed, "
            f"{media_failed} failed, {len(face_detection_ids)} faces"
        )
        return {
            'mediaProcessed': media_processed,
            'mediaFailed': media_failed,
            'facesDetected': len(face_detection_ids),
            'faceDetectionIds': face_detection_ids,
            'groupingJobId': grouping_job_id,
        }

    def _ensure_collection(self, db: Session, group: Group) -> str:
        collection_id = group.collection_id or collection_id_for_group(group.id)
        try:
            self.vision.create_collection(collection_id)
        except TransientVisionError:
            raise
        except VisionServiceError as e:
            raise JobSetupError(f"Collection {collection_id} is missing and could not be created: {e}")

        if group.collection_id != collection_id:
            GroupRepository(db).set_collection(group.id, collection_id)
        return collection_id

    def _process_media(self, db: Session, group: Group, collection_id: str, media: Media) -> List[FaceDetection]:
        faces = self.vision.detect_faces(media.s3_bucket, media.s3_key)
        media_repo = MediaRepository(db)

        if not faces:
            logger.info(f"[Face Detection] No faces in media {media.id}")
            media_repo.mark_processed(media)
            return []

        image_bytes = self.storage.download_file(media.s3_key, bucket=media.s3_bucket)
        detections = []
        for face_index, face in enumerate(faces):
            try:
                detection = self._index_face(group, collection_id, media, face_index, face, image_bytes)
            except TransientVisionError:
                raise
            except (VisionServiceError, ValueError) as e:
                logger.warning(f"[Face Detection] Skipping face {face_index} of media {media.id}: {e}")
                continue
            if detection is not None:
                db.add(detection)
                detections.append(detection)

        media_repo.mark_processed(media, commit=False)
        db.commit()
        logger.info(f"[Face Detection] Indexed {len(detections)}/{len(faces)} faces from media {media.id}")
        return detections

    def _index_face(
        self,
        group: Group,
        collection_id: str,
        media: Media,
        face_index: int,
        face: FaceRecord,
        image_bytes: bytes,
    ) -> Optional[FaceDetection]:
        enhanced = self.enhancer.enhance(image_bytes, face.bounding_box)
        indexed = self.vision.index_face(collection_id, enhanced, f"{media.id}-{face_index}")
        if not indexed or not indexed[0].face_id:
            logger.warning(f"[Face Detection] Vendor rejected face {face_index} of media {media.id}")
            return None
        record = indexed[0]

        quality = record.quality or face.quality
        pose = record.pose or face.pose

        key = thumbnail_key(group.id, media.id, face_index)
        try:
            self.storage.upload_file(enhanced, key, content_type='image/jpeg')
        except S3ServiceError as e:
            logger.warning(f"[Face Detection] Thumbnail upload failed for {key}: {e}")
            key = None

        return FaceDetection(
            media_id=media.id,
            rekognition_face_id=record.face_id,
            bounding_box=face.bounding_box.to_dict(),
            confidence=face.confidence,
            quality=quality,
            pose=pose,
            quality_score=calculate_quality_score(face.confidence, quality, pose),
            thumbnail_s3_key=key,
            processed=False,
        )


# ============================================================================
# Grouping
# ============================================================================

class GroupingStage(Stage):
    """
    Cluster a snapshot of unprocessed face detections.

    Progress: 0-20% setup, 20-60% clustering, 60-100% persistence.
    Each persisted cluster commits together with the processed flag of its
    faces; the remaining input faces are marked processed only once the
    whole job finished, so a cancelled job leaves them for a later pass.

    A ``recluster`` payload takes every indexed face of the group instead,
    and replaces the group's clusters once the vendor searches are done.
    """

    job_type = JobType.GROUPING

    def __init__(
        self,
        clusterer: SimilarityClusterer,
        cache: Optional[CacheBackend] = None,
        threshold: Optional[float] = None,
        singleton_policy: Optional[str] = None,
        singleton_confidence: Optional[float] = None,
    ):
        self.clusterer = clusterer
        self.cache = cache
        self.threshold = settings.FACE_SIMILARITY_THRESHOLD if threshold is None else threshold
        self.singleton_policy = SingletonPolicy(singleton_policy or settings.FACE_SINGLETON_POLICY)
        self.singleton_confidence = (
            settings.FACE_SINGLETON_CONFIDENCE if singleton_confidence is None else singleton_confidence
        )

    def run(self, ctx: JobContext) -> Dict[str, Any]:
        db = ctx.db
        payload = ctx.payload
        group = self._load_group(db, payload)
        if not group.collection_id:
            raise JobSetupError(f"Group {group.id} has no face collection")

        face_repo = FaceDetectionRepository(db)
        cluster_repo = FaceClusterRepository(db)
        recluster = bool(payload.get('recluster'))

        if recluster:
            faces = face_repo.find_indexed_by_group(group.id)
        else:
            requested = [as_uuid(i) for i in payload.get('face_detection_ids', [])]
            faces = [
                f for f in face_repo.find_unprocessed(requested)
                if f.media is not None and f.media.group_id == group.id
            ]
        ctx.progress(20)

        result = {
            'facesConsidered': len(faces),
            'clustersCreated': 0,
            'facesGrouped': 0,
            'unclusteredFaces': 0,
            'clustersUpdated': 0,
        }
        if recluster:
            result['clustersDeleted'] = 0
        if not faces:
            logger.info(f"[Face Grouping] Job {ctx.job.id}: no faces to group, nothing to do")
            return result

        by_vendor_id = {f.rekognition_face_id: f for f in faces if f.rekognition_face_id}
        input_ids = [f.id for f in faces]

        logger.info(f"[Face Grouping] Job {ctx.job.id}: clustering {len(by_vendor_id)} faces")

        if payload.get('incremental'):
            self._run_incremental(ctx, group, by_vendor_id, face_repo, cluster_repo, result)
        else:
            self._run_full(ctx, group, by_vendor_id, face_repo, cluster_repo, result, replace=recluster)

        face_repo.mark_processed(input_ids)
        invalidate_group_cache(group.id, media=True, clusters=True, backend=self.cache)

        logger.info(
            f"[Face Grouping] Job {ctx.job.id} done: {result['clustersCreated']} clusters created, "
            f"{result['clustersUpdated']} updated, {result['unclusteredFaces']} unclustered"
        )
        return result

    def _run_full(self, ctx, group, by_vendor_id, face_repo, cluster_repo, result, replace=False) -> None:
        clustered = self.clusterer.cluster(
            group.collection_id,
            list(by_vendor_id),
            threshold=self.threshold,
            checkpoint=ctx.checkpoint,
        )
        ctx.progress(60)

        if replace:
            ctx.checkpoint()
            result['clustersDeleted'] = cluster_repo.delete_by_group(group.id, commit=False)
            # Faces not yet persisted again are left for a later grouping pass
            face_repo.mark_processed([f.id for f in by_vendor_id.values()], commit=False, processed=False)
            ctx.db.commit()
            logger.info(f"[Face Grouping] Job {ctx.job.id}: replaced {result['clustersDeleted']} clusters")

        singletons = clustered.unclustered_faces if self.singleton_policy == SingletonPolicy.persist else []
        total = len(clustered.clusters) + len(singletons)
        done = 0

        for face_group in clustered.clusters:
            ctx.checkpoint()
            created = self._persist_group(ctx, group, face_group, by_vendor_id, face_repo, cluster_repo)
            if created:
                result['clustersCreated'] += 1
                result['facesGrouped'] += created
            done += 1
            ctx.progress(60 + done / total * 40)

        result['unclusteredFaces'] = len(clustered.unclustered_faces)

        for vendor_id in singletons:
            ctx.checkpoint()
            face = by_vendor_id[vendor_id]
            cluster = cluster_repo.create_cluster(
                group.id, [face.id], self.singleton_confidence, job_id=ctx.job.id, commit=False,
            )
            face_repo.mark_processed([face.id], commit=False)
            ctx.db.commit()
            if cluster:
                result['clustersCreated'] += 1
            done += 1
            ctx.progress(60 + done / total * 40)

    def _run_incremental(self, ctx, group, by_vendor_id, face_repo, cluster_repo, result) -> None:
        existing = []
        clusters_by_id = {}
        for cluster in cluster_repo.find_by_group(group.id):
            vendor_ids = [
                m.face_detection.rekognition_face_id
                for m in cluster_repo.get_members(cluster.id)
                if m.face_detection is not None and m.face_detection.rekognition_face_id
            ]
            existing.append(ExistingCluster(key=cluster.id, face_ids=vendor_ids))
            clusters_by_id[cluster.id] = cluster

        incremental = self.clusterer.add_faces_to_clusters(
            group.collection_id,
            list(by_vendor_id),
            existing,
            threshold=self.threshold,
            checkpoint=ctx.checkpoint,
        )
        ctx.progress(60)

        total = len(incremental.updated_clusters) + len(incremental.new_clusters)
        done = 0

        for update in incremental.updated_clusters:
            ctx.checkpoint()
            cluster = clusters_by_id[update.key]
            ids = [by_vendor_id[v].id for v in update.added_face_ids if v in by_vendor_id]
            added = cluster_repo.add_members(cluster, ids, cluster.confidence, commit=False)
            face_repo.mark_processed(ids, commit=False)
            ctx.db.commit()
            result['clustersUpdated'] += 1
            result['facesGrouped'] += added
            done += 1
            ctx.progress(60 + done / total * 40)

        for face_group in incremental.new_clusters:
            ctx.checkpoint()
            created = self._persist_group(ctx, group, face_group, by_vendor_id, face_repo, cluster_repo)
            if created:
                result['clustersCreated'] += 1
                result['facesGrouped'] += created
            done += 1
            ctx.progress(60 + done / total * 40)

        result['unclusteredFaces'] = len(incremental.unclustered_faces)

    def _persist_group(
        self,
        ctx: JobContext,
        group: Group,
        face_group: FaceGroup,
        by_vendor_id: Dict[str, FaceDetection],
        face_repo: FaceDetectionRepository,
        cluster_repo: FaceClusterRepository,
    ) -> int:
        """Store one cluster and mark its input faces processed in the same commit."""
        faces = self._resolve_faces(group, face_group.face_ids, by_vendor_id, face_repo)
        if len(faces) < 2:
            logger.warning(f"[Face Grouping] Cluster resolved to {len(faces)} local faces, skipping")
            return 0

        representative = by_vendor_id.get(face_group.representative_face_id)
        cluster = cluster_repo.create_cluster(
            group.id,
            [f.id for f in faces],
            confidence=face_group.average_similarity / 100,
            representative_face_detection_id=representative.id if representative else None,
            job_id=ctx.job.id,
            commit=False,
        )
        face_repo.mark_processed([f.id for f in faces if f.rekognition_face_id in by_vendor_id], commit=False)
        ctx.db.commit()
        return cluster.appearance_count if cluster else 0

    @staticmethod
    def _resolve_faces(
        group: Group,
        vendor_ids: List[str],
        by_vendor_id: Dict[str, FaceDetection],
        face_repo: FaceDetectionRepository,
    ) -> List[FaceDetection]:
        """Map vendor face IDs to local detections; unknown IDs are dropped."""
        missing = [v for v in vendor_ids if v not in by_vendor_id]
        known = {f.rekognition_face_id: f for f in face_repo.find_by_vendor_ids(group.id, missing)}
        faces = []
        for vendor_id in vendor_ids:
            face = by_vendor_id.get(vendor_id) or known.get(vendor_id)
            if face is not None:
                faces.append(face)
        return faces


# ============================================================================
# Cleanup
# ============================================================================

class CleanupStage(Stage):
    """
    Delete media (by explicit IDs or older than a cutoff) with their stored
    bytes, vendor faces and detections, and shrink the storage counter.

    Never retried: each media item is committed on its own, so a retry
    after a partial run could double-decrement the storage counter.
    """

    job_type = JobType.CLEANUP

    def __init__(self, vision: VisionGateway, storage: S3Service, cache: Optional[CacheBackend] = None):
        self.vision = vision
        self.storage = storage
        self.cache = cache

    def run(self, ctx: JobContext) -> Dict[str, Any]:
        db = ctx.db
        payload = ctx.payload
        group = self._load_group(db, payload)

        media_repo = MediaRepository(db)
        if payload.get('media_ids'):
            media_items = [
                m for m in media_repo.get_many(as_uuid(i) for i in payload['media_ids'])
                if m.group_id == group.id
            ]
        else:
            cutoff = datetime.fromisoformat(payload['cutoff'])
            media_items = media_repo.find_older_than(group.id, cutoff)
        ctx.progress(10)

        total = len(media_items)
        media_deleted = 0
        bytes_freed = 0
        faces_deleted = 0
        clusters_deleted = 0

        logger.info(f"[Cleanup] Job {ctx.job.id}: deleting {total} media items from group {group.id}")

        for index, media in enumerate(media_items):
            ctx.checkpoint()
            size = media.file_size or 0
            faces, removed_clusters = self._delete_media(db, group, media, size)
            media_deleted += 1
            bytes_freed += size
            faces_deleted += faces
            clusters_deleted += removed_clusters
            ctx.progress(10 + (index + 1) / total * 85)

        if media_deleted:
            invalidate_group_cache(group.id, media=True, clusters=True, backend=self.cache)

        logger.info(f"[Cleanup] Job {ctx.job.id} done: {media_deleted} media, {bytes_freed} bytes freed")
        return {
            'mediaDeleted': media_deleted,
            'bytesFreed': bytes_freed,
            'facesDeleted': faces_deleted,
            'clustersDeleted': clusters_deleted,
        }

    def _delete_media(self, db: Session, group: Group, media: Media, size: int):
        face_repo = FaceDetectionRepository(db)
        cluster_repo = FaceClusterRepository(db)

        faces = face_repo.find_by_media(media.id)
        affected_clusters = cluster_repo.cluster_ids_for_faces(f.id for f in faces)

        keys = [media.s3_key] + [f.thumbnail_s3_key for f in faces if f.thumbnail_s3_key]
        _, failed = self.storage.delete_objects_bulk(keys)
        if failed:
            raise S3ServiceError(f"Failed to delete {len(failed)} objects for media {media.id}")

        vendor_ids = [f.rekognition_face_id for f in faces if f.rekognition_face_id]
        if vendor_ids and group.collection_id:
            try:
                self.vision.delete_faces(group.collection_id, vendor_ids)
            except VisionServiceError as e:
                logger.error(f"[Cleanup] Could not remove vendor faces of media {media.id}: {e}")

        deleted_faces = face_repo.delete_by_media(media.id, commit=False)
        db.delete(media)
        db.flush()
        removed_clusters = cluster_repo.refresh_clusters(affected_clusters, commit=False)
        GroupRepository(db).update_storage_used(group.id, -size, commit=False)
        db.commit()
        return deleted_faces, removed_clusters
