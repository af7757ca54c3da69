"""
Job API Tests
=============

Enqueue, poll, list and cancel pipeline jobs over HTTP.
"""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from src.models.enums import JobStatus, JobType


pytestmark = pytest.mark.integration

API = "/api/v1"


@pytest.fixture
def group(make_group):
    return make_group()


# ============================================================================
# Enqueue
# ============================================================================

class TestEnqueue:

    def test_detection_job_is_accepted(self, client, dispatcher, group, make_media):
        media = make_media(group)

        response = client.post(
            f"{API}/groups/{group.id}/jobs/detection",
            json={"media_ids": [str(media.id)]},
        )

        assert response.status_code == 202
        body = response.json()
        assert body["job_type"] == "DETECTION"
        assert body["status"] == "PENDING"
        assert dispatcher.dispatched == [(JobType.DETECTION, body["job_id"])]

        status = client.get(f"{API}/jobs/{body['job_id']}").json()
        assert status["status"] == "PENDING"
        assert status["progress"] == 0
        assert status["collection_id"] == str(group.id)
        assert status["payload"]["media_ids"] == [str(media.id)]

    def test_grouping_job_is_accepted(self, client, group):
        response = client.post(
            f"{API}/groups/{group.id}/jobs/grouping",
            json={"face_detection_ids": [str(uuid4())], "incremental": True},
        )

        assert response.status_code == 202
        assert response.json()["job_type"] == "GROUPING"

    def test_recluster_job_is_accepted(self, client, dispatcher, group, make_media, make_face):
        make_face(make_media(group), "A", processed=True)

        response = client.post(f"{API}/groups/{group.id}/jobs/recluster")

        assert response.status_code == 202
        body = response.json()
        assert body["job_type"] == "GROUPING"
        assert dispatcher.dispatched == [(JobType.GROUPING, body["job_id"])]
        payload = client.get(f"{API}/jobs/{body['job_id']}").json()["payload"]
        assert payload["recluster"] is True
        assert payload["face_detection_ids"] == []

    def test_recluster_without_faces_rejected(self, client, dispatcher, group):
        response = client.post(f"{API}/groups/{group.id}/jobs/recluster")

        assert response.status_code == 400
        assert response.json()["detail"] == "No faces found to cluster"
        assert dispatcher.dispatched == []

    def test_recluster_unknown_group(self, client):
        assert client.post(f"{API}/groups/{uuid4()}/jobs/recluster").status_code == 404

    def test_unknown_group(self, client):
        response = client.post(
            f"{API}/groups/{uuid4()}/jobs/detection",
            json={"media_ids": [str(uuid4())]},
        )

        assert response.status_code == 404

    def test_empty_media_list_rejected(self, client, group):
        response = client.post(f"{API}/groups/{group.id}/jobs/detection", json={"media_ids": []})

        assert response.status_code == 422

    def test_cleanup_needs_exactly_one_target(self, client, group):
        both = client.post(
            f"{API}/groups/{group.id}/jobs/cleanup",
            json={"media_ids": [str(uuid4())], "cutoff": "2024-01-01T00:00:00"},
        )
        neither = client.post(f"{API}/groups/{group.id}/jobs/cleanup", json={})

        assert both.status_code == 422
        assert neither.status_code == 422

    def test_cleanup_by_cutoff(self, client, group):
        response = client.post(
            f"{API}/groups/{group.id}/jobs/cleanup",
            json={"cutoff": "2024-01-01T00:00:00"},
        )

        assert response.status_code == 202
        job = client.get(f"{API}/jobs/{response.json()['job_id']}").json()
        assert job["payload"]["cutoff"].startswith("2024-01-01T00:00:00")


# ============================================================================
# Status
# ============================================================================

class TestStatus:

    def test_unknown_job(self, client):
        response = client.get(f"{API}/jobs/does-not-exist")

        assert response.status_code == 404
        assert "does-not-exist" in response.json()["detail"]

    def test_list_jobs_newest_first(self, client, db_session, group, make_job):
        older = make_job(JobType.DETECTION, collection_id=str(group.id), status=JobStatus.COMPLETED)
        newer = make_job(JobType.GROUPING, collection_id=str(group.id))
        make_job(JobType.DETECTION, collection_id=str(uuid4()))
        older.created_at = datetime.utcnow() - timedelta(minutes=5)
        db_session.commit()

        response = client.get(f"{API}/groups/{group.id}/jobs")

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert [j["job_id"] for j in body["jobs"]] == [newer.id, older.id]


# ============================================================================
# Cancellation
# ============================================================================

class TestCancel:

    def test_cancel_pending_job(self, client, dispatcher, group):
        job_id = client.post(
            f"{API}/groups/{group.id}/jobs/grouping",
            json={"face_detection_ids": [str(uuid4())]},
        ).json()["job_id"]

        response = client.post(f"{API}/jobs/{job_id}/cancel")

        assert response.status_code == 200
        assert response.json() == {
            "job_id": job_id,
            "cancelled": True,
            "status": "CANCELLED",
            "message": "Job cancelled",
        }
        assert dispatcher.revoked == [job_id]

    def test_cancel_running_job_sets_flag(self, client, group, make_job):
        job = make_job(JobType.GROUPING, collection_id=str(group.id), status=JobStatus.PROCESSING)

        response = client.post(f"{API}/jobs/{job.id}/cancel")

        body = response.json()
        assert body["cancelled"] is True
        assert body["status"] == "PROCESSING"
        assert body["message"] == "Cancellation requested"
        assert client.get(f"{API}/jobs/{job.id}").json()["cancel_requested"] is True

    def test_cancel_twice(self, client, group):
        job_id = client.post(
            f"{API}/groups/{group.id}/jobs/grouping",
            json={"face_detection_ids": [str(uuid4())]},
        ).json()["job_id"]
        client.post(f"{API}/jobs/{job_id}/cancel")

        response = client.post(f"{API}/jobs/{job_id}/cancel")

        assert response.status_code == 200
        assert response.json()["cancelled"] is False
        assert response.json()["message"] == "Job already CANCELLED"

    def test_cancel_unknown_job(self, client):
        assert client.post(f"{API}/jobs/missing/cancel").status_code == 404


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "environment": "test"}
