"""
Utils package
"""
from .data_utils import (
    first_value,
    get_request_data,
    parse_bool,
)
from .file_utils import (
    delete_identity_images,
    discard_face_image,
    read_capture_bytes,
    save_face_image,
)

__all__ = [
    'first_value',
    'get_request_data',
    'parse_bool',
    'delete_identity_images',
    'discard_face_image',
    'read_capture_bytes',
    'save_face_image',
]
