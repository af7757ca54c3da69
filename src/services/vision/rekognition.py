"""AWS Rekognition implementation of the vision gateway."""
import re
import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError
from typing import Any, Dict, List, Optional
import logging

from src.app.config import settings
from src.core.exceptions import TransientVisionError, VisionServiceError
from src.services.vision.base import BoundingBox, FaceMatch, FaceRecord, VisionGateway

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_CODES = {
    'ThrottlingException',
    'ProvisionedThroughputExceededException',
    'LimitExceededException',
    'InternalServerError',
    'ServiceUnavailableException',
}

DELETE_FACES_BATCH = 4096

_UNSAFE_ID_CHARS = re.compile(r'[^a-zA-Z0-9_.\-]')


def collection_id_for_group(group_id: Any, prefix: Optional[str] = None) -> str:
    """Vendor collection name for a group: ``{prefix}-{group id}``."""
    prefix = prefix or settings.REKOGNITION_COLLECTION_PREFIX
    return f"{prefix}-{_UNSAFE_ID_CHARS.sub('-', str(group_id))}"[:255]


def external_image_id(value: Any) -> str:
    """Rekognition accepts only ``[a-zA-Z0-9_.\\-:]`` in ExternalImageId."""
    return re.sub(r'[^a-zA-Z0-9_.\-:]', '_', str(value))[:255]


def _translate(error: Exception, action: str) -> VisionServiceError:
    if isinstance(error, ClientError):
        code = error.response.get('Error', {}).get('Code', '')
        if code in TRANSIENT_ERROR_CODES:
            return TransientVisionError(f"{action} throttled ({code}): {error}")
        return VisionServiceError(f"{action} failed ({code}): {error}")
    return TransientVisionError(f"{action} failed: {error}")


def _face_record(detail: Dict[str, Any], face_id: Optional[str] = None) -> FaceRecord:
    box = detail.get('BoundingBox', {})
    quality = detail.get('Quality')
    pose = detail.get('Pose')
    return FaceRecord(
        bounding_box=BoundingBox(
            x=box.get('Left', 0.0),
            y=box.get('Top', 0.0),
            width=box.get('Width', 0.0),
            height=box.get('Height', 0.0),
        ),
        confidence=float(detail.get('Confidence', 0.0)),
        quality={
            'brightness': quality.get('Brightness'),
            'sharpness': quality.get('Sharpness'),
        } if quality else None,
        pose={
            'roll': pose.get('Roll'),
            'yaw': pose.get('Yaw'),
            'pitch': pose.get('Pitch'),
        } if pose else None,
        face_id=face_id,
    )


class RekognitionGateway(VisionGateway):
    """Thin wrapper over the boto3 Rekognition client."""

    def __init__(self, client=None):
        try:
            self.client = client or boto3.client(
                'rekognition',
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                region_name=settings.AWS_REGION,
                config=Config(retries={'max_attempts': 2, 'mode': 'standard'}),
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to initialize Rekognition client: {e}")
            raise VisionServiceError(f"Rekognition initialization failed: {str(e)}")

    def create_collection(self, collection_id: str) -> None:
        try:
            self.client.create_collection(CollectionId=collection_id)
            logger.info(f"Created Rekognition collection: {collection_id}")
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ResourceAlreadyExistsException':
                logger.debug(f"Collection already exists: {collection_id}")
                return
            raise _translate(e, 'CreateCollection')
        except BotoCoreError as e:
            raise _translate(e, 'CreateCollection')

    def detect_faces(self, bucket: str, key: str) -> List[FaceRecord]:
        try:
            response = self.client.detect_faces(
                Image={'S3Object': {'Bucket': bucket, 'Name': key}},
                Attributes=['ALL'],
            )
        except (BotoCoreError, ClientError) as e:
            raise _translate(e, 'DetectFaces')

        faces = [_face_record(detail) for detail in response.get('FaceDetails', [])]
        logger.debug(f"Detected {len(faces)} faces in s3://{bucket}/{key}")
        return faces

    def index_face(self, collection_id: str, image_bytes: bytes, external_id: str) -> List[FaceRecord]:
        try:
            response = self.client.index_faces(
                CollectionId=collection_id,
                Image={'Bytes': image_bytes},
                ExternalImageId=external_image_id(external_id),
                DetectionAttributes=['ALL'],
                MaxFaces=1,
                QualityFilter='AUTO',
            )
        except (BotoCoreError, ClientError) as e:
            raise _translate(e, 'IndexFaces')

        records = []
        for face_record in response.get('FaceRecords', []):
            face = face_record.get('Face', {})
            detail = dict(face_record.get('FaceDetail', {}))
            detail.setdefault('Confidence', face.get('Confidence', 0.0))
            records.append(_face_record(detail, face_id=face.get('FaceId')))
        return records

    def search_similar(
        self,
        collection_id: str,
        face_id: str,
        max_results: int,
        threshold: float,
    ) -> List[FaceMatch]:
        try:
            response = self.client.search_faces(
                CollectionId=collection_id,
                FaceId=face_id,
                MaxFaces=max_results,
                FaceMatchThreshold=float(threshold),
            )
        except (BotoCoreError, ClientError) as e:
            raise _translate(e, 'SearchFaces')

        return [
            FaceMatch(face_id=match['Face']['FaceId'], similarity=float(match['Similarity']))
            for match in response.get('FaceMatches', [])
            if match.get('Face', {}).get('FaceId') and match['Face']['FaceId'] != face_id
        ]

    def delete_faces(self, collection_id: str, face_ids: List[str]) -> None:
        face_ids = [f for f in face_ids if f]
        for i in range(0, len(face_ids), DELETE_FACES_BATCH):
            batch = face_ids[i:i + DELETE_FACES_BATCH]
            try:
                self.client.delete_faces(CollectionId=collection_id, FaceIds=batch)
            except (BotoCoreError, ClientError) as e:
                raise _translate(e, 'DeleteFaces')
            logger.info(f"Deleted {len(batch)} faces from {collection_id}")
