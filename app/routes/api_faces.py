"""
API routes for face profiles
Đăng ký khuôn mặt, quản lý hồ sơ và gallery
"""
from flask import Blueprint, current_app, g, jsonify, request

from app.globals import get_services
from app.middleware.auth import is_admin, role_required
from app.utils import (
    delete_identity_images,
    discard_face_image,
    first_value,
    get_request_data,
    parse_bool,
    read_capture_bytes,
    save_face_image,
)
from core.errors import NoFaceDetected
from logging_config import face_recognition_logger, security_logger
from services.face_service import decode_image

faces_api_bp = Blueprint('faces_api', __name__, url_prefix='/api/faces')


@faces_api_bp.route('', methods=['GET'])
@role_required('admin')
def api_list_faces():
    active = parse_bool(request.args.get('active'))
    faces = get_services().faces
    profiles = faces.list_active() if active else faces.list()
    if active is False:
        profiles = [p for p in profiles if not p.active]
    return jsonify({'success': True, 'faces': [p.summary() for p in profiles]})


@faces_api_bp.route('/<identity_id>', methods=['GET'])
def api_get_face(identity_id):
    if not is_admin() and g.user['id'] != identity_id:
        return jsonify({'success': False, 'message': 'Không có quyền truy cập'}), 403
    profile = get_services().faces.get(identity_id)
    if profile is None:
        return jsonify({'success': False, 'message': 'Không tìm thấy hồ sơ khuôn mặt'}), 404
    payload = profile.summary()
    if is_admin() and parse_bool(request.args.get('include_vectors'), False):
        payload['embeddings'] = dict(profile.samples)
        payload['embeddingAverage'] = profile.embedding_average
    return jsonify({'success': True, 'face': payload})


@faces_api_bp.route('/enroll', methods=['POST'])
def api_enroll_face():
    """Chụp ảnh -> embedding -> thêm mẫu (tạo hồ sơ nếu chưa có)."""
    data = get_request_data()
    user = g.user
    identity_id = first_value(data, 'identity_id', 'identityId') or user['id']
    if identity_id != user['id'] and not is_admin(user):
        return jsonify({'success': False, 'message': 'Chỉ được đăng ký khuôn mặt của chính mình'}), 403

    own = identity_id == user['id']
    display_name = first_value(data, 'display_name', 'displayName') or (user['name'] if own else '')
    contact_email = first_value(data, 'contact_email', 'contactEmail') or (user['email'] if own else '')

    services = get_services()
    image_bytes = read_capture_bytes(data)
    vector = services.face_session.extract(decode_image(image_bytes))
    if vector is None:
        raise NoFaceDetected()

    image_path = save_face_image(image_bytes, identity_id)
    try:
        profile = services.faces.add_embedding(
            identity_id,
            vector,
            display_name=display_name,
            contact_email=contact_email,
            image_url=image_path,
        )
    except Exception:
        discard_face_image(image_path)
        raise
    if is_admin(user):
        active = parse_bool(data.get('active'), True)
        if active != profile.active:
            profile = services.faces.set_active(identity_id, active)
    services.face_session.rebuild()

    face_recognition_logger.log_enrollment(identity_id, profile.sample_count)
    return jsonify({'success': True, 'face': profile.summary()}), 201


@faces_api_bp.route('/<identity_id>', methods=['PUT'])
@role_required('admin')
def api_upsert_face(identity_id):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'success': False, 'message': 'Dữ liệu JSON không hợp lệ'}), 400
    data = dict(data)
    data['identityId'] = identity_id

    services = get_services()
    try:
        profile = services.faces.upsert(data)
    except (TypeError, ValueError) as exc:
        return jsonify({'success': False, 'message': f'Dữ liệu không hợp lệ: {exc}'}), 400
    services.face_session.rebuild()
    security_logger.log_admin_action(g.user['email'], 'upsert_face', identity_id)
    return jsonify({'success': True, 'face': profile.summary()})


@faces_api_bp.route('/<identity_id>/active', methods=['POST'])
@role_required('admin')
def api_toggle_face_active(identity_id):
    data = get_request_data()
    services = get_services()
    profile = services.faces.set_active(identity_id, parse_bool(data.get('active')))
    if profile is None:
        return jsonify({'success': False, 'message': 'Không tìm thấy hồ sơ khuôn mặt'}), 404
    services.face_session.rebuild()
    security_logger.log_admin_action(g.user['email'], 'set_face_active', f'{identity_id}={profile.active}')
    return jsonify({'success': True, 'face': profile.summary()})


@faces_api_bp.route('/<identity_id>', methods=['DELETE'])
@role_required('admin')
def api_delete_face(identity_id):
    services = get_services()
    if not services.faces.delete(identity_id):
        return jsonify({'success': False, 'message': 'Không tìm thấy hồ sơ khuôn mặt'}), 404
    if parse_bool(request.args.get('delete_images'), False):
        delete_identity_images(identity_id)
    services.face_session.rebuild()
    security_logger.log_admin_action(g.user['email'], 'delete_face', identity_id)
    current_app.logger.info("Deleted face profile %s", identity_id)
    return jsonify({'success': True})


@faces_api_bp.route('/gallery/rebuild', methods=['POST'])
@role_required('admin')
def api_rebuild_gallery():
    gallery = get_services().face_session.rebuild()
    return jsonify({'success': True, 'gallery': gallery.describe()})
