"""
Cluster API Tests
=================

Manual cluster maintenance: merge and face removal.
"""

from uuid import uuid4

import pytest

from src.core.cache import cluster_list_key
from src.repositories.face_cluster_repo import FaceClusterRepository


pytestmark = pytest.mark.integration

API = "/api/v1/clusters"


@pytest.fixture
def group(make_group):
    return make_group(collection_id="face-media-group-test")


@pytest.fixture
def two_clusters(db_session, group, make_media, make_face):
    repo = FaceClusterRepository(db_session)
    faces = [make_face(make_media(group), vendor_id, processed=True) for vendor_id in ("A", "B", "C")]
    target = repo.create_cluster(group.id, [faces[0].id, faces[1].id], confidence=0.9)
    source = repo.create_cluster(group.id, [faces[2].id], confidence=0.6)
    return {'target': target.id, 'source': source.id, 'faces': [f.id for f in faces]}


class TestMerge:

    def test_merge_moves_members(self, client, db_session, memory_cache, group, two_clusters):
        memory_cache.set(cluster_list_key(group.id), ["stale"])

        response = client.post(
            f"{API}/{two_clusters['target']}/merge",
            json={"source_cluster_id": str(two_clusters['source'])},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == str(two_clusters['target'])
        assert body["appearance_count"] == 3
        assert body["confidence"] == pytest.approx(0.8)
        assert FaceClusterRepository(db_session).get(two_clusters['source']) is None
        assert memory_cache.get(cluster_list_key(group.id)) is None

    def test_merge_with_itself(self, client, two_clusters):
        response = client.post(
            f"{API}/{two_clusters['target']}/merge",
            json={"source_cluster_id": str(two_clusters['target'])},
        )

        assert response.status_code == 400

    def test_merge_unknown_source(self, client, two_clusters):
        response = client.post(
            f"{API}/{two_clusters['target']}/merge",
            json={"source_cluster_id": str(uuid4())},
        )

        assert response.status_code == 404


class TestRemoveFace:

    def test_remove_one_face(self, client, two_clusters):
        face_id = two_clusters['faces'][0]

        response = client.delete(f"{API}/{two_clusters['target']}/faces/{face_id}")

        assert response.status_code == 200
        assert response.json() == {
            "cluster_id": str(two_clusters['target']),
            "cluster_deleted": False,
            "remaining_faces": 1,
        }

    def test_removing_last_face_deletes_cluster(self, client, db_session, two_clusters):
        face_id = two_clusters['faces'][2]

        response = client.delete(f"{API}/{two_clusters['source']}/faces/{face_id}")

        assert response.json()["cluster_deleted"] is True
        assert response.json()["remaining_faces"] == 0
        assert FaceClusterRepository(db_session).get(two_clusters['source']) is None

    def test_face_not_in_cluster(self, client, two_clusters):
        face_id = two_clusters['faces'][2]

        response = client.delete(f"{API}/{two_clusters['target']}/faces/{face_id}")

        assert response.status_code == 404

    def test_unknown_cluster(self, client):
        response = client.delete(f"{API}/{uuid4()}/faces/{uuid4()}")

        assert response.status_code == 404
