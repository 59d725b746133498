"""
App package initialization
Khởi tạo Flask application và cấu hình
"""
import os

from flask import Flask, jsonify
from werkzeug.exceptions import RequestEntityTooLarge

import config
from app.globals import EXTENSION_KEY, ServiceRegistry
from core.attendance.context import LocalContextValidator, RemoteContextValidator
from core.attendance.state_manager import AttemptRegistry, AttendanceValidator
from core.errors import (
    AttendanceError,
    IdentityError,
    ModelLoadError,
    NoOpenAttendance,
    StoreUnavailable,
)
from core.recognition.gallery import Matcher
from core.recognition.session import FaceSession
from database import DocumentStore
from logging_config import setup_logging
from services.identity_service import IdentityClient
from services.repositories import ClassRepository, FacesRepository, PresenceRepository

CONFIG_KEYS = (
    'SECRET_KEY', 'MAX_CONTENT_LENGTH', 'DATABASE_PATH', 'FACE_IMAGE_DIR', 'LOG_DIR', 'LOG_LEVEL',
    'ALLOWED_EXTENSIONS', 'FACE_MATCH_THRESHOLD', 'EMBEDDING_BACKENDS', 'DEEPFACE_MODEL_NAME',
    'FACE_DETECTION_MODEL', 'RECORD_ATTEMPT_SAMPLES', 'STRICT_FACE_MATCH', 'LOCATION_MAX_AGE_SECONDS',
    'CHECKIN_GRACE_MINUTES', 'LIVENESS_CHECK', 'BLUR_THRESHOLD', 'ATTEMPT_TTL_SECONDS',
    'ANTIFRAUD_BACKEND_URL', 'IDENTITY_USERINFO_URL', 'HTTP_TIMEOUT_SECONDS', 'ADMIN_EMAILS',
)

ERROR_STATUS = {
    StoreUnavailable: 503,
    ModelLoadError: 503,
    NoOpenAttendance: 409,
    IdentityError: 401,
}


def error_status(exc):
    for error_type, status in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status
    return 422


def _init_inference_engine(app):
    """Khởi tạo inference engine với các backend theo thứ tự cấu hình"""
    from core.inference.engine import DeepFaceStrategy, FaceRecognitionStrategy, InferenceEngine
    from services.face_service import FaceRecognitionService

    engine = InferenceEngine(logger=app.logger)
    face_service = None
    for backend in app.config['EMBEDDING_BACKENDS']:
        if backend == 'face_recognition':
            face_service = FaceRecognitionService(detection_model=app.config['FACE_DETECTION_MODEL'])
            engine.add_strategy(FaceRecognitionStrategy(service=face_service, logger=app.logger))
        elif backend == 'deepface':
            engine.add_strategy(
                DeepFaceStrategy(model_name=app.config['DEEPFACE_MODEL_NAME'], logger=app.logger)
            )
        else:
            app.logger.warning("[STARTUP] Unknown embedding backend: %s", backend)
    if not engine.has_strategies():
        app.logger.warning("[STARTUP] No embedding backend configured")
    return engine, face_service


def _init_liveness(app, face_service):
    if not app.config['LIVENESS_CHECK']:
        return None
    from services.antispoof_service import QualityLivenessCheck

    face_counter = face_service.count_faces if face_service is not None else None
    return QualityLivenessCheck(face_counter=face_counter, blur_threshold=app.config['BLUR_THRESHOLD'])


def _init_remote_validator(app, context_oracle):
    if context_oracle is None and app.config['ANTIFRAUD_BACKEND_URL']:
        from services.antispoof_service import RemoteAntiFraudOracle

        context_oracle = RemoteAntiFraudOracle(
            app.config['ANTIFRAUD_BACKEND_URL'], timeout=app.config['HTTP_TIMEOUT_SECONDS']
        )
    if context_oracle is None:
        return None
    app.logger.info("[STARTUP] Context checks delegated to anti-fraud backend")
    return RemoteContextValidator(
        context_oracle,
        location_max_age_seconds=app.config['LOCATION_MAX_AGE_SECONDS'],
        logger=app.logger,
    )


def register_error_handlers(app):
    @app.errorhandler(AttendanceError)
    def handle_attendance_error(exc):
        payload = {'success': False}
        payload.update(exc.to_dict())
        return jsonify(payload), error_status(exc)

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(exc):
        return jsonify({'success': False, 'message': 'Ảnh quá lớn'}), 413

    @app.errorhandler(404)
    def handle_not_found(exc):
        return jsonify({'success': False, 'message': 'Không tìm thấy'}), 404

    @app.errorhandler(405)
    def handle_method_not_allowed(exc):
        return jsonify({'success': False, 'message': 'Phương thức không được hỗ trợ'}), 405


def create_app(test_config=None, *, face_engine=None, context_oracle=None, identity_client=None):
    """Factory function để tạo Flask application"""
    app = Flask(__name__)

    app.config.from_mapping({key: getattr(config, key) for key in CONFIG_KEYS})
    if test_config:
        app.config.update(test_config)

    if not app.config.get('TESTING'):
        setup_logging(app, app.config['LOG_LEVEL'], app.config['LOG_DIR'])

    app.logger.info(f"[STARTUP] Working directory: {os.getcwd()}")
    app.logger.info(f"[STARTUP] Database path: {os.path.abspath(app.config['DATABASE_PATH'])}")

    # 1. Document store + repositories
    store = DocumentStore(app.config['DATABASE_PATH'])
    faces = FacesRepository(store)
    presences = PresenceRepository(store)
    classes = ClassRepository(store)

    # 2. Embedding model (tải lười ở lần dùng đầu tiên)
    face_service = None
    if face_engine is None:
        face_engine, face_service = _init_inference_engine(app)

    face_session = FaceSession(
        engine=face_engine,
        faces=faces,
        matcher=Matcher(app.config['FACE_MATCH_THRESHOLD']),
        logger=app.logger,
    )
    face_session.rebuild()

    # 3. Context checks + validator
    liveness = _init_liveness(app, face_service)
    context_validator = LocalContextValidator(
        classes=classes,
        grace_minutes=app.config['CHECKIN_GRACE_MINUTES'],
        location_max_age_seconds=app.config['LOCATION_MAX_AGE_SECONDS'],
        liveness=liveness,
        logger=app.logger,
    )
    validator = AttendanceValidator(
        face_session=face_session,
        presences=presences,
        context_validator=context_validator,
        remote_validator=_init_remote_validator(app, context_oracle),
        registry=AttemptRegistry(app.config['ATTEMPT_TTL_SECONDS']),
        record_samples=app.config['RECORD_ATTEMPT_SAMPLES'],
        strict=app.config['STRICT_FACE_MATCH'],
        location_max_age_seconds=app.config['LOCATION_MAX_AGE_SECONDS'],
        logger=app.logger,
    )

    if identity_client is None:
        identity_client = IdentityClient(
            app.config['IDENTITY_USERINFO_URL'], timeout=app.config['HTTP_TIMEOUT_SECONDS']
        )

    app.extensions[EXTENSION_KEY] = ServiceRegistry(
        store=store,
        faces=faces,
        presences=presences,
        classes=classes,
        face_session=face_session,
        validator=validator,
        identity_client=identity_client,
        liveness=liveness,
    )
    app.logger.info("[STARTUP] All services initialized successfully")

    # Đăng ký middleware
    from app.middleware.auth import register_auth_middleware
    register_auth_middleware(app)

    # Đăng ký blueprints
    from app.routes import register_blueprints
    register_blueprints(app)

    register_error_handlers(app)
    return app
