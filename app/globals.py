"""
Service references cho từng Flask app
Các service được tạo trong create_app() và gắn vào app.extensions,
không dùng biến toàn cục cấp module
"""
from dataclasses import dataclass
from typing import Any, Optional

from flask import current_app

EXTENSION_KEY = 'face_presence'


@dataclass
class ServiceRegistry:
    store: Any
    faces: Any
    presences: Any
    classes: Any
    face_session: Any
    validator: Any
    identity_client: Any
    liveness: Optional[Any] = None


def get_services(app=None) -> ServiceRegistry:
    """Lấy ServiceRegistry của app hiện tại."""
    app = app or current_app
    return app.extensions[EXTENSION_KEY]
