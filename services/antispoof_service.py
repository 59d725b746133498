"""
Liveness / quality checks applied to a check-in capture.

Two implementations:
- QualityLivenessCheck: local OpenCV heuristics (exactly one face, sharpness,
  exposure)
- RemoteAntiFraudOracle: delegates the whole check-in context (geofence, time
  window, face checks) to an external anti-fraud backend over HTTP
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import cv2
import numpy as np
import requests

logger = logging.getLogger(__name__)


@dataclass
class LivenessResult:
    passed: bool
    confidence: float = 0.0
    reason: str = ""
    metrics: Optional[Dict[str, float]] = None


class QualityLivenessCheck:
    """Reject captures that are blurry, badly exposed or not exactly one face."""

    def __init__(self,
                 face_counter: Optional[Callable[[np.ndarray], int]] = None,
                 blur_threshold: float = 100.0,
                 min_brightness: float = 40.0,
                 max_brightness: float = 220.0):
        """
        Args:
            face_counter: callable returning the number of faces in an RGB image.
                If None, the face-count rule is skipped.
            blur_threshold: minimum variance of the Laplacian (higher = sharper)
            min_brightness, max_brightness: accepted mean gray level range
        """
        self.face_counter = face_counter
        self.blur_threshold = blur_threshold
        self.min_brightness = min_brightness
        self.max_brightness = max_brightness

    def measure(self, image: np.ndarray) -> Dict[str, float]:
        if image.ndim == 3:
            gray = cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
        else:
            gray = image
        return {
            'sharpness': float(cv2.Laplacian(gray, cv2.CV_64F).var()),
            'brightness': float(np.mean(gray)),
        }

    def evaluate(self, image: np.ndarray) -> LivenessResult:
        if self.face_counter is not None:
            faces = int(self.face_counter(image))
            if faces == 0:
                return LivenessResult(False, 0.0, "No face detected in the capture.")
            if faces > 1:
                return LivenessResult(False, 0.0, "Multiple faces detected. Only one person may check in.")

        metrics = self.measure(image)
        confidence = round(min(metrics['sharpness'] / (self.blur_threshold * 2), 1.0), 3)
        if metrics['sharpness'] < self.blur_threshold:
            logger.info("Ảnh bị mờ: %.1f < %.1f", metrics['sharpness'], self.blur_threshold)
            return LivenessResult(False, confidence, "The photo is too blurry. Hold still and try again.", metrics)
        if metrics['brightness'] < self.min_brightness:
            return LivenessResult(False, confidence, "The photo is too dark.", metrics)
        if metrics['brightness'] > self.max_brightness:
            return LivenessResult(False, confidence, "The photo is too bright.", metrics)
        return LivenessResult(True, confidence, "", metrics)


@dataclass
class AntiFraudVerdict:
    success: bool
    error: Optional[str] = None
    record_id: Optional[str] = None
    timestamp: Optional[str] = None
    distance: Optional[float] = None


class RemoteAntiFraudOracle:
    """Client for ``POST {base}/attendance/check-in`` on the anti-fraud backend."""

    def __init__(self, base_url: str, timeout: float = 10.0, session: Any = None):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/attendance/check-in"

    def check_in(self, *, class_id, location, image_bytes) -> AntiFraudVerdict:
        data = {'classId': class_id or '', 'lat': location.lat, 'lng': location.lng}
        files = {'image': ('capture.jpg', image_bytes or b'', 'image/jpeg')}
        try:
            response = self.session.post(self.endpoint, data=data, files=files, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.error("Không thể kết nối anti-fraud backend %s: %s", self.endpoint, exc)
            return AntiFraudVerdict(False, error="The anti-fraud service is unreachable. Try again.")

        try:
            body = response.json()
        except ValueError:
            logger.error("Anti-fraud backend trả về dữ liệu không hợp lệ (HTTP %s)", response.status_code)
            return AntiFraudVerdict(False, error=f"Anti-fraud service error (HTTP {response.status_code}).")

        if not body.get('success'):
            return AntiFraudVerdict(False, error=body.get('error') or "Check-in rejected by the anti-fraud service.")
        payload = body.get('data') or {}
        distance = payload.get('distance')
        return AntiFraudVerdict(
            True,
            record_id=payload.get('recordId'),
            timestamp=payload.get('timestamp'),
            distance=float(distance) if distance is not None else None,
        )
