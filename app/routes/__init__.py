"""
Routes package
Đăng ký tất cả các blueprints
"""
from .auth import auth_bp
from .api_faces import faces_api_bp
from .api_classes import class_api_bp
from .api_attendance import attendance_api_bp
from .api_system import system_api_bp


def register_blueprints(app):
    """Đăng ký tất cả các blueprints với Flask app."""
    # Authentication routes
    app.register_blueprint(auth_bp)

    # API routes
    app.register_blueprint(faces_api_bp)
    app.register_blueprint(class_api_bp)
    app.register_blueprint(attendance_api_bp)
    app.register_blueprint(system_api_bp)

    app.logger.info("Đã đăng ký tất cả blueprints")
