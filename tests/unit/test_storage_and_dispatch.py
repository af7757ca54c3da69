import pytest
from botocore.exceptions import ClientError

from src.models.enums import JobType
from src.services.storage.s3 import S3Service, S3ServiceError, thumbnail_key
from src.tasks.celery_app import CeleryDispatcher


@pytest.fixture
def s3_client(mocker):
    return mocker.MagicMock()


@pytest.fixture
def s3(s3_client):
    return S3Service(client=s3_client, bucket_name="media-bucket")


class TestS3Service:

    def test_thumbnail_key(self):
        assert thumbnail_key("g", "m", 2) == "thumbnails/g/m-face-2.jpg"

    def test_download(self, s3, s3_client, mocker):
        body = mocker.MagicMock()
        body.read.return_value = b"bytes"
        s3_client.get_object.return_value = {'Body': body}

        assert s3.download_file("media/a.jpg") == b"bytes"
        s3_client.get_object.assert_called_once_with(Bucket="media-bucket", Key="media/a.jpg")

    def test_download_from_other_bucket(self, s3, s3_client, mocker):
        body = mocker.MagicMock()
        body.read.return_value = b"bytes"
        s3_client.get_object.return_value = {'Body': body}

        s3.download_file("media/a.jpg", bucket="uploads-eu")

        s3_client.get_object.assert_called_once_with(Bucket="uploads-eu", Key="media/a.jpg")

    def test_download_missing_key(self, s3, s3_client):
        s3_client.get_object.side_effect = ClientError(
            {'Error': {'Code': 'NoSuchKey', 'Message': 'missing'}}, 'GetObject'
        )

        with pytest.raises(S3ServiceError, match="not found"):
            s3.download_file("media/a.jpg")

    def test_bulk_delete_chunks_and_reports_failures(self, s3, s3_client):
        keys = [f"k{i}" for i in range(1500)]
        s3_client.delete_objects.side_effect = [
            {'Deleted': [{'Key': k} for k in keys[:1000]]},
            {'Deleted': [{'Key': k} for k in keys[1000:1499]], 'Errors': [{'Key': 'k1499', 'Message': 'denied'}]},
        ]

        deleted, failed = s3.delete_objects_bulk(keys + ["k0", None])

        assert deleted == 1499
        assert failed == ['k1499']
        assert s3_client.delete_objects.call_count == 2

    def test_bulk_delete_nothing(self, s3, s3_client):
        assert s3.delete_objects_bulk([]) == (0, [])
        s3_client.delete_objects.assert_not_called()


class TestCeleryDispatcher:

    def test_dispatch_routes_by_job_type(self, mocker):
        app = mocker.MagicMock()
        dispatcher = CeleryDispatcher(app=app)

        dispatcher.dispatch(JobType.GROUPING, "job-1")

        app.send_task.assert_called_once_with(
            'tasks.group_faces', args=["job-1"], task_id="job-1", queue='face_grouping',
        )

    def test_revoke(self, mocker):
        app = mocker.MagicMock()

        CeleryDispatcher(app=app).revoke("job-1")

        app.control.revoke.assert_called_once_with("job-1")
