"""
Face Quality Scoring
====================

Composite 0-100 score used to pick display faces:

- confidence: up to 30 points, linear
- brightness: 25 points in the 40-80 band, 15 in 30-90, otherwise 5
- sharpness: up to 25 points, linear
- pose: up to 20 points, decreasing with mean |roll|, |yaw|, |pitch|

Missing quality or pose metadata contributes nothing.
"""

import math
from typing import Any, Mapping, Optional

CONFIDENCE_POINTS = 30
BRIGHTNESS_POINTS = 25
SHARPNESS_POINTS = 25
POSE_POINTS = 20


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, float(value)))


def _brightness_points(brightness: float) -> int:
    if 40 <= brightness <= 80:
        return BRIGHTNESS_POINTS
    if 30 <= brightness <= 90:
        return 15
    return 5


def _pose_points(roll: float, yaw: float, pitch: float) -> int:
    deviation = (abs(roll) + abs(yaw) + abs(pitch)) / 3
    if deviation < 10:
        return POSE_POINTS
    if deviation < 20:
        return 15
    if deviation < 30:
        return 10
    return 5


def calculate_quality_score(
    confidence: float,
    quality: Optional[Mapping[str, Any]] = None,
    pose: Optional[Mapping[str, Any]] = None,
) -> int:
    """
    Score a face from its vendor metadata.

    Args:
        confidence: Detector confidence (0-100)
        quality: Optional {"brightness", "sharpness"} (0-100 each)
        pose: Optional {"roll", "yaw", "pitch"} in degrees

    Returns:
        Integer score in [0, 100]
    """
    score = _clamp(confidence) / 100 * CONFIDENCE_POINTS

    if quality:
        if quality.get('brightness') is not None:
            score += _brightness_points(_clamp(quality['brightness']))
        if quality.get('sharpness') is not None:
            score += _clamp(quality['sharpness']) / 100 * SHARPNESS_POINTS

    if pose:
        score += _pose_points(
            pose.get('roll') or 0.0,
            pose.get('yaw') or 0.0,
            pose.get('pitch') or 0.0,
        )

    # Round half up
    return int(min(100, math.floor(score + 0.5)))


def score_face(face: Any) -> int:
    """Score a vision-gateway face record (anything with confidence/quality/pose)."""
    return calculate_quality_score(
        face.confidence,
        getattr(face, 'quality', None),
        getattr(face, 'pose', None),
    )
