import cv2
import numpy as np
from typing import Tuple
import logging

from src.services.vision.base import BoundingBox

logger = logging.getLogger(__name__)


class FaceEnhancer:
    """
    Crop and clean up a detected face before indexing.

    Steps:
    - Crop the bounding box with padding on every side
    - Resize to a fixed square (Lanczos)
    - Stretch contrast, then a slight linear brightness lift
    - Unsharp mask, then a 3x3 median filter for sensor noise
    - Encode as JPEG
    """

    def __init__(
        self,
        output_size: int = 600,
        padding: float = 0.2,
        jpeg_quality: int = 90,
        contrast: float = 1.05,
        brightness: float = 5.0,
        sharpen_sigma: float = 1.5,
    ):
        self.output_size = output_size
        self.padding = padding
        self.jpeg_quality = jpeg_quality
        self.contrast = contrast
        self.brightness = brightness
        self.sharpen_sigma = sharpen_sigma

    def enhance(self, image_bytes: bytes, bbox: BoundingBox) -> bytes:
        """
        Args:
            image_bytes: Encoded source image
            bbox: Face box as image-relative ratios

        Returns:
            JPEG bytes of size output_size x output_size

        Raises:
            ValueError: image cannot be decoded or the box is empty
        """
        image = self._decode(image_bytes)
        x1, y1, x2, y2 = self._crop_region(image.shape[:2], bbox)
        crop = image[y1:y2, x1:x2]
        if crop.size == 0:
            raise ValueError(f"Empty face crop for box {bbox.to_dict()}")

        face = cv2.resize(
            crop,
            (self.output_size, self.output_size),
            interpolation=cv2.INTER_LANCZOS4,
        )
        face = cv2.normalize(face, None, 0, 255, cv2.NORM_MINMAX)
        face = cv2.convertScaleAbs(face, alpha=self.contrast, beta=self.brightness)

        blurred = cv2.GaussianBlur(face, (0, 0), self.sharpen_sigma)
        face = cv2.addWeighted(face, 1.5, blurred, -0.5, 0)
        face = cv2.medianBlur(face, 3)

        ok, encoded = cv2.imencode('.jpg', face, [cv2.IMWRITE_JPEG_QUALITY, self.jpeg_quality])
        if not ok:
            raise ValueError("Failed to encode enhanced face")
        return encoded.tobytes()

    @staticmethod
    def _decode(image_bytes: bytes) -> np.ndarray:
        buffer = np.frombuffer(image_bytes, dtype=np.uint8)
        image = cv2.imdecode(buffer, cv2.IMREAD_COLOR) if buffer.size else None
        if image is None:
            raise ValueError("Could not decode image")
        return image

    def _crop_region(self, shape: Tuple[int, int], bbox: BoundingBox) -> Tuple[int, int, int, int]:
        height, width = shape
        x = bbox.x * width
        y = bbox.y * height
        w = bbox.width * width
        h = bbox.height * height
        pad_w = w * self.padding
        pad_h = h * self.padding

        x1 = max(0, int(x - pad_w))
        y1 = max(0, int(y - pad_h))
        x2 = min(width, int(round(x + w + pad_w)))
        y2 = min(height, int(round(y + h + pad_h)))
        return x1, y1, x2, y2
