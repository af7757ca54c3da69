"""S3 storage service for media originals and face thumbnails."""
import boto3
from botocore.client import Config
from botocore.exceptions import ClientError, BotoCoreError
from typing import Optional, Dict, List, Tuple
import logging

from src.app.config import settings

logger = logging.getLogger(__name__)

BULK_DELETE_LIMIT = 1000


class S3ServiceError(Exception):
    """Custom exception for S3 service errors."""
    pass


def thumbnail_key(group_id, media_id, face_index: int) -> str:
    """S3 key of a face thumbnail: thumbnails/{group_id}/{media_id}-face-{i}.jpg"""
    return f"thumbnails/{group_id}/{media_id}-face-{face_index}.jpg"


class S3Service:
    """Service for S3 operations with comprehensive error handling."""

    def __init__(self, client=None, bucket_name: Optional[str] = None):
        """Initialize S3 client with configuration."""
        try:
            self.s3_client = client or boto3.client(
                's3',
                aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
                aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                region_name=settings.AWS_REGION,
                config=Config(
                    signature_version='s3v4',
                    s3={'addressing_style': 'virtual'}
                )
            )
            self.bucket_name = bucket_name or settings.S3_BUCKET_NAME
            logger.info(f"S3 Service initialized for bucket: {self.bucket_name}")
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to initialize S3 client: {e}")
            raise S3ServiceError(f"S3 initialization failed: {str(e)}")

    def download_file(self, s3_key: str, bucket: Optional[str] = None) -> bytes:
        """
        Download file from S3 and return raw bytes.

        Reads from ``bucket`` when given, else the configured bucket.

        Raises:
            S3ServiceError: If download fails
        """
        try:
            response = self.s3_client.get_object(
                Bucket=bucket or self.bucket_name,
                Key=s3_key
            )
            file_bytes = response['Body'].read()
            logger.debug(f"Downloaded {len(file_bytes)} bytes from: {s3_key}")
            return file_bytes

        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', '')
            if error_code == 'NoSuchKey':
                raise S3ServiceError(f"Object not found: {s3_key}")
            logger.error(f"Error downloading file: {e}")
            raise S3ServiceError(f"Failed to download file: {str(e)}")
        except BotoCoreError as e:
            raise S3ServiceError(f"Failed to download file: {str(e)}")

    def upload_file(
        self,
        file_data: bytes,
        s3_key: str,
        content_type: str = 'application/octet-stream',
        metadata: Optional[Dict[str, str]] = None
    ) -> bool:
        """
        Upload file bytes directly to S3.

        Raises:
            S3ServiceError: If upload fails
        """
        try:
            params = {
                'Bucket': self.bucket_name,
                'Key': s3_key,
                'Body': file_data,
                'ContentType': content_type
            }

            if metadata:
                params['Metadata'] = metadata

            self.s3_client.put_object(**params)
            logger.info(f"Uploaded {len(file_data)} bytes to: {s3_key}")
            return True

        except (ClientError, BotoCoreError) as e:
            logger.error(f"Error uploading file: {e}")
            raise S3ServiceError(f"Failed to upload file: {str(e)}")

    def delete_objects_bulk(self, s3_keys: List[str]) -> Tuple[int, List[str]]:
        """
        Delete objects in chunks of 1000 keys per request.

        Returns:
            Tuple of (success_count, failed_keys)

        Raises:
            S3ServiceError: If a bulk request fails outright
        """
        s3_keys = [key for key in dict.fromkeys(s3_keys) if key]
        success_count = 0
        failed_keys: List[str] = []

        for i in range(0, len(s3_keys), BULK_DELETE_LIMIT):
            chunk = s3_keys[i:i + BULK_DELETE_LIMIT]
            try:
                response = self.s3_client.delete_objects(
                    Bucket=self.bucket_name,
                    Delete={'Objects': [{'Key': key} for key in chunk], 'Quiet': False}
                )
            except (ClientError, BotoCoreError) as e:
                logger.error(f"Error in bulk delete: {e}")
                raise S3ServiceError(f"Bulk delete failed: {str(e)}")

            success_count += len(response.get('Deleted', []))
            for error in response.get('Errors', []):
                logger.error(f"Failed to delete {error['Key']}: {error.get('Message', 'Unknown error')}")
                failed_keys.append(error['Key'])

        if s3_keys:
            logger.info(f"Bulk delete: {success_count} succeeded, {len(failed_keys)} failed")
        return success_count, failed_keys
