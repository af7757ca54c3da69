from .clustering import (
    SimilarityClusterer,
    FaceGroup,
    ClusterResult,
    ExistingCluster,
    ClusterUpdate,
    IncrementalResult,
)
from .quality import calculate_quality_score, score_face
from .union_find import DisjointSet

__all__ = [
    "SimilarityClusterer",
    "FaceGroup",
    "ClusterResult",
    "ExistingCluster",
    "ClusterUpdate",
    "IncrementalResult",
    "calculate_quality_score",
    "score_face",
    "DisjointSet",
]
