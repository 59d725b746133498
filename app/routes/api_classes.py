"""
API routes for class sessions
Các API endpoint cho lịch học (giờ học, phòng, vị trí cho phép)
"""
import uuid

from flask import Blueprint, g, jsonify

from app.globals import get_services
from app.middleware.auth import role_required
from app.utils import first_value, get_request_data
from core.attendance.records import ClassSession
from logging_config import security_logger

class_api_bp = Blueprint('class_api', __name__, url_prefix='/api/classes')


def serialize_class(session):
    payload = session.to_document()
    payload['id'] = session.class_id
    return payload


@class_api_bp.route('', methods=['GET'])
def api_list_classes():
    classes = get_services().classes.list()
    return jsonify({'success': True, 'classes': [serialize_class(c) for c in classes]})


@class_api_bp.route('', methods=['POST'])
@role_required('admin')
def api_save_class():
    data = get_request_data()
    class_id = str(first_value(data, 'id', 'class_id', 'classId') or uuid.uuid4().hex)
    try:
        session = ClassSession.from_document(data, class_id=class_id)
    except (KeyError, TypeError, ValueError) as exc:
        return jsonify({'success': False, 'message': f'Dữ liệu lớp học không hợp lệ: {exc}'}), 400

    if not session.course_name:
        return jsonify({'success': False, 'message': 'Thiếu tên môn học'}), 400
    if session.start_time and session.end_time and session.end_time <= session.start_time:
        return jsonify({'success': False, 'message': 'Giờ kết thúc phải sau giờ bắt đầu'}), 400
    if session.allowed_location and session.allowed_location.radius_meters <= 0:
        return jsonify({'success': False, 'message': 'Bán kính cho phép phải lớn hơn 0'}), 400

    saved = get_services().classes.save(session)
    security_logger.log_admin_action(g.user['email'], 'save_class', class_id)
    return jsonify({'success': True, 'class': serialize_class(saved)}), 201


@class_api_bp.route('/<class_id>', methods=['GET'])
def api_get_class(class_id):
    session = get_services().classes.get(class_id)
    if session is None:
        return jsonify({'success': False, 'message': 'Không tìm thấy lớp học'}), 404
    return jsonify({'success': True, 'class': serialize_class(session)})


@class_api_bp.route('/<class_id>', methods=['DELETE'])
@role_required('admin')
def api_delete_class(class_id):
    if not get_services().classes.delete(class_id):
        return jsonify({'success': False, 'message': 'Không tìm thấy lớp học'}), 404
    security_logger.log_admin_action(g.user['email'], 'delete_class', class_id)
    return jsonify({'success': True})
