"""
Similarity-graph face clustering.

The vision service never exposes embeddings, only "faces similar to X"
queries, so clusters are inferred from those pairwise scores:

1. Build a similarity graph by searching every input face at threshold T.
2. Take connected components (union-find) as provisional clusters.
3. Merge pass at T: search a few members of each cluster and join
   clusters whose members show up in each other's results.
4. Merge pass at T - 5, only while more than one cluster remains.
5. Enrich each cluster with its average edge similarity and a
   representative face.

Clusters of one face are reported separately as unclustered.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple
import logging
import time

from src.core.exceptions import TransientVisionError, VisionServiceError
from src.services.face.union_find import DisjointSet
from src.services.vision.base import FaceMatch, VisionGateway

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 85.0

Edge = Tuple[str, str]


@dataclass
class FaceGroup:
    """One resolved cluster of vendor face IDs."""
    face_ids: List[str]
    representative_face_id: str
    average_similarity: float

    @property
    def size(self) -> int:
        return len(self.face_ids)


@dataclass
class ClusterResult:
    clusters: List[FaceGroup] = field(default_factory=list)
    unclustered_faces: List[str] = field(default_factory=list)


@dataclass
class ExistingCluster:
    """A persisted cluster as seen by incremental clustering."""
    key: Any
    face_ids: List[str]


@dataclass
class ClusterUpdate:
    key: Any
    added_face_ids: List[str]


@dataclass
class IncrementalResult:
    updated_clusters: List[ClusterUpdate] = field(default_factory=list)
    new_clusters: List[FaceGroup] = field(default_factory=list)
    unclustered_faces: List[str] = field(default_factory=list)


def _validate_threshold(threshold: float) -> float:
    threshold = float(threshold)
    if not 0 < threshold <= 100:
        raise ValueError(f"Similarity threshold must be in (0, 100], got {threshold}")
    return threshold


class SimilarityClusterer:
    """
    Partition indexed faces into identity clusters using vendor similarity
    searches only.

    Never writes to the vendor index. Output order is deterministic for
    deterministic vendor responses: clusters follow the first appearance
    of their members in the input, and members keep input order.
    """

    def __init__(
        self,
        vision: VisionGateway,
        max_results: int = 100,
        batch_size: int = 5,
        batch_delay: float = 1.0,
        merge_sample_size: int = 3,
        merge_delay: float = 0.15,
        second_pass_delta: float = 5.0,
        incremental_delay: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.vision = vision
        self.max_results = max_results
        self.batch_size = max(1, batch_size)
        self.batch_delay = batch_delay
        self.merge_sample_size = max(1, merge_sample_size)
        self.merge_delay = merge_delay
        self.second_pass_delta = second_pass_delta
        self.incremental_delay = incremental_delay
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Full clustering
    # ------------------------------------------------------------------

    def cluster(
        self,
        collection_id: str,
        face_ids: Iterable[str],
        threshold: float = DEFAULT_THRESHOLD,
        checkpoint: Optional[Callable[[], None]] = None,
    ) -> ClusterResult:
        """
        Cluster ``face_ids`` within one vendor collection.

        Args:
            collection_id: Vendor collection to search in
            face_ids: Vendor face IDs to partition
            threshold: Similarity threshold on a 0-100 scale
            checkpoint: Called before each pass; raise from it to abort

        Returns:
            ClusterResult where every input face appears exactly once,
            either in a cluster of 2+ faces or in ``unclustered_faces``
        """
        threshold = _validate_threshold(threshold)
        face_ids = list(dict.fromkeys(face_ids))
        if not face_ids:
            return ClusterResult()

        checkpoint = checkpoint or (lambda: None)
        order = {face_id: i for i, face_id in enumerate(face_ids)}

        logger.info(f"Clustering {len(face_ids)} faces in {collection_id} at threshold {threshold}")

        checkpoint()
        edges = self._build_graph(collection_id, face_ids, order, threshold)

        faces = DisjointSet(face_ids)
        for a, b in edges:
            faces.union(a, b)
        groups = faces.groups()
        logger.info(f"Similarity graph: {len(edges)} edges, {len(groups)} provisional clusters")

        merge_edges: Dict[Edge, float] = {}

        if len(groups) > 1:
            checkpoint()
            groups = self._merge_pass(collection_id, groups, order, threshold, merge_edges)
            logger.info(f"Merge pass at {threshold}: {len(groups)} clusters")

        if len(groups) > 1:
            second_threshold = max(threshold - self.second_pass_delta, 1.0)
            checkpoint()
            groups = self._merge_pass(collection_id, groups, order, second_threshold, merge_edges)
            logger.info(f"Merge pass at {second_threshold}: {len(groups)} clusters")

        result = ClusterResult()
        for members in groups:
            if len(members) < 2:
                result.unclustered_faces.append(members[0])
                continue
            result.clusters.append(self._enrich(members, edges, merge_edges))

        logger.info(
            f"Clustering done: {len(result.clusters)} clusters, "
            f"{len(result.unclustered_faces)} unclustered faces"
        )
        return result

    def _search(self, collection_id: str, face_id: str, threshold: float) -> List[FaceMatch]:
        try:
            return self.vision.search_similar(collection_id, face_id, self.max_results, threshold)
        except TransientVisionError:
            raise
        except VisionServiceError as e:
            logger.warning(f"Similarity search failed for face {face_id}: {e}")
            return []

    def _build_graph(
        self,
        collection_id: str,
        face_ids: List[str],
        order: Dict[str, int],
        threshold: float,
    ) -> Dict[Edge, float]:
        """Search every face and keep undirected edges between input faces."""
        edges: Dict[Edge, float] = {}
        batches = [
            face_ids[i:i + self.batch_size]
            for i in range(0, len(face_ids), self.batch_size)
        ]

        with ThreadPoolExecutor(max_workers=self.batch_size) as pool:
            for index, batch in enumerate(batches):
                if index > 0 and self.batch_delay:
                    self._sleep(self.batch_delay)
                results = list(pool.map(
                    lambda face_id: self._search(collection_id, face_id, threshold),
                    batch,
                ))
                for face_id, matches in zip(batch, results):
                    for match in matches:
                        self._add_edge(edges, order, face_id, match, threshold)

        return edges

    @staticmethod
    def _add_edge(
        edges: Dict[Edge, float],
        order: Dict[str, int],
        face_id: str,
        match: FaceMatch,
        threshold: float,
    ) -> Optional[Edge]:
        other = match.face_id
        if other == face_id or other not in order or match.similarity < threshold:
            return None
        key = (face_id, other) if order[face_id] < order[other] else (other, face_id)
        edges[key] = max(edges.get(key, 0.0), float(match.similarity))
        return key

    def _merge_pass(
        self,
        collection_id: str,
        groups: List[List[str]],
        order: Dict[str, int],
        threshold: float,
        merge_edges: Dict[Edge, float],
    ) -> List[List[str]]:
        """Join clusters whose sampled members find each other at ``threshold``."""
        cluster_of = {face_id: i for i, members in enumerate(groups) for face_id in members}
        clusters = DisjointSet(range(len(groups)))

        for i, members in enumerate(groups):
            for face_id in members[:self.merge_sample_size]:
                matches = self._search(collection_id, face_id, threshold)
                if self.merge_delay:
                    self._sleep(self.merge_delay)
                for match in matches:
                    other = cluster_of.get(match.face_id)
                    if other is None or other == i:
                        continue
                    if self._add_edge(merge_edges, order, face_id, match, threshold):
                        clusters.union(i, other)

        merged = []
        for indexes in clusters.groups():
            members = [face_id for i in indexes for face_id in groups[i]]
            members.sort(key=order.__getitem__)
            merged.append(members)
        merged.sort(key=lambda members: order[members[0]])
        return merged

    @staticmethod
    def _enrich(
        members: List[str],
        edges: Dict[Edge, float],
        merge_edges: Dict[Edge, float],
    ) -> FaceGroup:
        member_set = set(members)
        intra = {k: w for k, w in edges.items() if k[0] in member_set and k[1] in member_set}
        if not intra:
            # Joined only by merge passes
            intra = {k: w for k, w in merge_edges.items() if k[0] in member_set and k[1] in member_set}

        degree = {face_id: 0 for face_id in members}
        for a, b in intra:
            degree[a] += 1
            degree[b] += 1

        representative = members[0]
        for face_id in members:
            if degree[face_id] > degree[representative]:
                representative = face_id

        average = sum(intra.values()) / len(intra) if intra else 0.0
        return FaceGroup(
            face_ids=list(members),
            representative_face_id=representative,
            average_similarity=round(average, 4),
        )

    # ------------------------------------------------------------------
    # Incremental clustering
    # ------------------------------------------------------------------

    def add_faces_to_clusters(
        self,
        collection_id: str,
        new_face_ids: Iterable[str],
        existing_clusters: Sequence[ExistingCluster],
        threshold: float = DEFAULT_THRESHOLD,
        checkpoint: Optional[Callable[[], None]] = None,
    ) -> IncrementalResult:
        """
        Attach new faces to known clusters with one search per face.

        A face joins the *first* cluster (existing clusters first, then
        clusters seeded earlier in this call) holding any of its matches,
        not the best-matching one. A face with matches but no matching
        cluster seeds a new cluster with those matches.
        """
        threshold = _validate_threshold(threshold)
        new_face_ids = list(dict.fromkeys(new_face_ids))
        checkpoint = checkpoint or (lambda: None)
        result = IncrementalResult()
        if not new_face_ids:
            return result

        assigned = {
            face_id: ('existing', i)
            for i, cluster in enumerate(existing_clusters)
            for face_id in cluster.face_ids
        }
        added: Dict[int, List[str]] = {}
        seeded: List[Tuple[List[str], str, List[float]]] = []

        for face_id in new_face_ids:
            if face_id in assigned:
                continue
            checkpoint()

            matches = [
                m for m in self._search(collection_id, face_id, threshold)
                if m.face_id != face_id and m.similarity >= threshold
            ]
            if self.incremental_delay:
                self._sleep(self.incremental_delay)

            match_ids = {m.face_id for m in matches}
            target = self._first_matching_cluster(match_ids, existing_clusters, seeded)

            if target is not None:
                kind, index = target
                if kind == 'existing':
                    added.setdefault(index, []).append(face_id)
                else:
                    seeded[index][0].append(face_id)
                assigned[face_id] = target
                continue

            companions = [m for m in matches if m.face_id not in assigned]
            if not companions:
                continue

            members = [face_id] + list(dict.fromkeys(m.face_id for m in companions))
            seeded.append((members, face_id, [float(m.similarity) for m in companions]))
            for member in members:
                assigned[member] = ('new', len(seeded) - 1)

        for index in sorted(added):
            result.updated_clusters.append(
                ClusterUpdate(key=existing_clusters[index].key, added_face_ids=added[index])
            )
        for members, representative, similarities in seeded:
            result.new_clusters.append(FaceGroup(
                face_ids=members,
                representative_face_id=representative,
                average_similarity=round(sum(similarities) / len(similarities), 4),
            ))
        result.unclustered_faces = [f for f in new_face_ids if f not in assigned]

        logger.info(
            f"Incremental clustering: {len(result.updated_clusters)} clusters updated, "
            f"{len(result.new_clusters)} new, {len(result.unclustered_faces)} unclustered"
        )
        return result

    @staticmethod
    def _first_matching_cluster(
        match_ids: set,
        existing_clusters: Sequence[ExistingCluster],
        seeded: List[Tuple[List[str], str, List[float]]],
    ) -> Optional[Tuple[str, int]]:
        if not match_ids:
            return None
        for i, cluster in enumerate(existing_clusters):
            if match_ids.intersection(cluster.face_ids):
                return ('existing', i)
        for i, (members, _, _) in enumerate(seeded):
            if match_ids.intersection(members):
                return ('new', i)
        return None
