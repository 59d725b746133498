"""
Dịch vụ trích xuất embedding khuôn mặt dựa trên face_recognition (dlib ResNet).

Giải mã ảnh chụp (JPEG/PNG/WEBP) thành mảng RGB, phát hiện khuôn mặt nổi bật
nhất (bounding box lớn nhất) và tạo embedding 128 chiều.
"""

import base64
import binascii
import io
import logging
from typing import List, Optional, Tuple

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from core.errors import InvalidImage

logger = logging.getLogger(__name__)

# (top, right, bottom, left) theo quy ước của face_recognition
FaceLocation = Tuple[int, int, int, int]


def decode_image(data: bytes) -> np.ndarray:
    """Giải mã bytes ảnh thành mảng RGB uint8, áp dụng hướng xoay EXIF."""
    if not data:
        raise InvalidImage("The captured image is empty.")
    try:
        with Image.open(io.BytesIO(data)) as img:
            img = ImageOps.exif_transpose(img)
            rgb = img.convert("RGB")
            return np.asarray(rgb, dtype=np.uint8).copy()
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise InvalidImage(f"The captured image could not be read: {exc}") from exc


def decode_base64_image(payload: str) -> bytes:
    """Chuỗi base64 (cho phép tiền tố data URL) -> bytes ảnh."""
    if not payload:
        raise InvalidImage("The captured image is empty.")
    if payload.startswith("data:") and "," in payload:
        payload = payload.split(",", 1)[1]
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImage("The captured image is not valid base64.") from exc


def face_area(location: FaceLocation) -> int:
    top, right, bottom, left = location
    return max(bottom - top, 0) * max(right - left, 0)


def most_prominent(locations: List[FaceLocation]) -> Optional[FaceLocation]:
    if not locations:
        return None
    return max(locations, key=face_area)


class FaceRecognitionService:
    """Bao bọc thư viện face_recognition; tải lười khi gọi load_model()."""

    def __init__(self, detection_model: str = "hog", upsample_times: int = 1, num_jitters: int = 1):
        self.detection_model = detection_model
        self.upsample_times = upsample_times
        self.num_jitters = num_jitters
        self._fr = None

    @property
    def loaded(self) -> bool:
        return self._fr is not None

    def load_model(self):
        """Import face_recognition (nạp trọng số dlib)."""
        if self._fr is not None:
            return
        try:
            import face_recognition
        except SystemExit as exc:
            # face_recognition gọi quit() khi thiếu gói face_recognition_models
            raise RuntimeError("face_recognition_models is not installed") from exc
        self._fr = face_recognition
        logger.info("Mô hình face_recognition (%s) đã được tải", self.detection_model)

    def detect_faces(self, image: np.ndarray) -> List[FaceLocation]:
        """Phát hiện tất cả khuôn mặt, trả về danh sách (top, right, bottom, left)."""
        self.load_model()
        return list(
            self._fr.face_locations(
                image, number_of_times_to_upsample=self.upsample_times, model=self.detection_model
            )
        )

    def count_faces(self, image: np.ndarray) -> int:
        return len(self.detect_faces(image))

    def get_embedding(self, image: np.ndarray) -> Optional[np.ndarray]:
        """Embedding 128 chiều của khuôn mặt lớn nhất, hoặc None nếu không có khuôn mặt."""
        location = most_prominent(self.detect_faces(image))
        if location is None:
            return None
        encodings = self._fr.face_encodings(
            image, known_face_locations=[location], num_jitters=self.num_jitters
        )
        if not encodings:
            return None
        return np.asarray(encodings[0], dtype=np.float64)
