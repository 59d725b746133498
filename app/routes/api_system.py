"""
API routes for system status
Các API cho trạng thái hệ thống
"""
from flask import Blueprint, current_app, jsonify

from app.globals import get_services
from app.middleware.auth import role_required
from core.attendance.records import CLASSES_COLLECTION, PRESENCES_COLLECTION
from core.errors import ModelLoadError
from core.recognition.profiles import FACES_COLLECTION

system_api_bp = Blueprint('system_api', __name__, url_prefix='/api/system')


@system_api_bp.route('/status', methods=['GET'])
def api_system_status():
    """API trạng thái hệ thống"""
    services = get_services()
    store = services.store
    return jsonify({
        'success': True,
        'face_session': services.face_session.describe(),
        'counts': {
            'faces': store.count(FACES_COLLECTION),
            'presences': store.count(PRESENCES_COLLECTION),
            'classes': store.count(CLASSES_COLLECTION),
        },
        'strict_face_match': services.validator.strict,
        'liveness_check': services.liveness is not None,
        'antifraud_backend': bool(current_app.config['ANTIFRAUD_BACKEND_URL']),
    })


@system_api_bp.route('/models/load', methods=['POST'])
@role_required('admin')
def api_load_models():
    """Tải trước mô hình embedding (thay vì chờ lần check-in đầu tiên)"""
    services = get_services()
    try:
        services.face_session.ensure_loaded()
    except ModelLoadError as exc:
        current_app.logger.error("Không thể tải mô hình: %s", exc.message)
        return jsonify({'success': False, 'error': exc.code, 'message': exc.message, 'tried': exc.tried}), 503
    return jsonify({'success': True, 'model': services.face_session.describe()['model']})
