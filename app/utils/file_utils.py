"""
File utilities
Đọc ảnh chụp từ request và lưu ảnh tham chiếu khuôn mặt
"""
import os
import shutil
from datetime import datetime
from pathlib import Path

from flask import current_app as app
from flask import request
from werkzeug.utils import secure_filename

from core.errors import InvalidImage
from services.face_service import decode_base64_image


def read_capture_bytes(data, required=True):
    """
    Lấy bytes ảnh từ file upload (field ``image``) hoặc base64 (field ``image_data``).
    Camera và upload được xử lý như nhau.
    """
    file_storage = request.files.get('image')
    if file_storage and file_storage.filename:
        _, ext = os.path.splitext(file_storage.filename)
        ext = (ext or '').lower().lstrip('.')
        allowed = app.config['ALLOWED_EXTENSIONS']
        if ext not in allowed:
            raise InvalidImage(f"Unsupported image type. Allowed: {', '.join(sorted(allowed))}")
        payload = file_storage.read()
        if not payload:
            raise InvalidImage("The uploaded image is empty.")
        return payload

    image_data = data.get('image_data') or data.get('imageData')
    if image_data:
        return decode_base64_image(image_data)

    if required:
        raise InvalidImage("No image was captured.")
    return None


def identity_image_dir(identity_id):
    safe_id = secure_filename(str(identity_id)) or 'identity'
    return Path(app.config['FACE_IMAGE_DIR']) / safe_id


def save_face_image(image_bytes, identity_id, *, timestamp=None, extension='jpg'):
    """Lưu ảnh tham chiếu; trả về đường dẫn dùng làm imageUrl."""
    directory = identity_image_dir(identity_id)
    directory.mkdir(parents=True, exist_ok=True)
    timestamp = timestamp or datetime.now().strftime('%Y%m%d%H%M%S%f')
    path = directory / secure_filename(f"{identity_id}_{timestamp}.{extension}")
    with open(path, 'wb') as fp:
        fp.write(image_bytes)
    return str(path)


def discard_face_image(image_path):
    """Xóa ảnh vừa lưu khi không ghi được hồ sơ; thư mục rỗng cũng bị xóa."""
    path = Path(image_path)
    try:
        path.unlink()
        if not any(path.parent.iterdir()):
            path.parent.rmdir()
    except OSError as exc:
        app.logger.warning("Không thể xóa ảnh %s: %s", path, exc)


def delete_identity_images(identity_id):
    """Xóa toàn bộ ảnh tham chiếu của một identity (không báo lỗi nếu thất bại)."""
    directory = identity_image_dir(identity_id)
    if directory.exists():
        shutil.rmtree(directory, ignore_errors=True)
        app.logger.debug("Removed image directory %s", directory)
