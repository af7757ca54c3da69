"""Vision gateway contract and the records it exchanges."""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional


def _ratio(value: Any) -> float:
    return max(0.0, min(1.0, float(value or 0.0)))


@dataclass
class BoundingBox:
    """Face box as image-relative ratios in [0, 1]."""
    x: float
    y: float
    width: float
    height: float

    def __post_init__(self):
        self.x = _ratio(self.x)
        self.y = _ratio(self.y)
        self.width = _ratio(self.width)
        self.height = _ratio(self.height)

    def to_dict(self) -> Dict[str, float]:
        return {'x': self.x, 'y': self.y, 'width': self.width, 'height': self.height}


@dataclass
class FaceRecord:
    """
    One face reported by the vision service.

    ``face_id`` is only present for records returned by indexing.
    """
    bounding_box: BoundingBox
    confidence: float
    quality: Optional[Dict[str, float]] = None
    pose: Optional[Dict[str, float]] = None
    face_id: Optional[str] = None


@dataclass
class FaceMatch:
    """A similar face returned by a similarity search."""
    face_id: str
    similarity: float


class VisionGateway(ABC):
    """Hosted face-recognition API scoped by collection."""

    @abstractmethod
    def create_collection(self, collection_id: str) -> None:
        """Create the collection; a no-op if it already exists."""
        pass

    @abstractmethod
    def detect_faces(self, bucket: str, key: str) -> List[FaceRecord]:
        """Detect faces in a stored image. Records carry no face_id."""
        pass

    @abstractmethod
    def index_face(self, collection_id: str, image_bytes: bytes, external_id: str) -> List[FaceRecord]:
        """Index a face crop; returned records carry the vendor face_id."""
        pass

    @abstractmethod
    def search_similar(
        self,
        collection_id: str,
        face_id: str,
        max_results: int,
        threshold: float,
    ) -> List[FaceMatch]:
        """Faces in the collection similar to ``face_id`` (excluding itself)."""
        pass

    @abstractmethod
    def delete_faces(self, collection_id: str, face_ids: List[str]) -> None:
        pass
