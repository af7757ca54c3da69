from .base import BoundingBox, FaceMatch, FaceRecord, VisionGateway

__all__ = ["BoundingBox", "FaceMatch", "FaceRecord", "VisionGateway"]
