"""
API routes for attendance
Các API endpoint cho check-in / check-out bằng khuôn mặt
"""
from flask import Blueprint, current_app, g, jsonify, request

from app import error_status
from app.globals import get_services
from app.middleware.auth import role_required
from app.utils import first_value, get_request_data, parse_bool, read_capture_bytes
from core.attendance.records import LocationFix
from core.attendance.state_manager import CheckInAttempt, CheckInOutcome
from core.errors import AttendanceError, InvalidImage, LocationUnavailable
from logging_config import face_recognition_logger
from services.face_service import decode_image

attendance_api_bp = Blueprint('attendance_api', __name__, url_prefix='/api/attendance')


def _read_location(data):
    """(LocationFix | None, lý do lỗi | None)"""
    try:
        return LocationFix.from_payload(data), None
    except LocationUnavailable as exc:
        return None, exc.reason


def _outcome_response(outcome):
    payload = outcome.to_dict()
    attempt = outcome.attempt
    if outcome.ok:
        record = outcome.record
        face_recognition_logger.log_check_in(
            attempt.identity_id, record.status, record.recognized, record.matcher_distance
        )
        return jsonify(payload), 201

    face_recognition_logger.log_rejection(attempt.identity_id, outcome.error, outcome.message)
    status = 422
    if outcome.error in ('store_unavailable', 'model_unavailable'):
        status = 503
    return jsonify(payload), status


@attendance_api_bp.route('/check-in', methods=['POST'])
def api_check_in():
    data = get_request_data()
    user = g.user
    services = get_services()
    validator = services.validator

    class_id = first_value(data, 'class_id', 'classId')
    attempt_id = first_value(data, 'attempt_id', 'attemptId')
    location, location_error = _read_location(data)

    if attempt_id:
        attempt = validator.registry.get(attempt_id)
        if attempt is None or attempt.identity_id != user['id']:
            return jsonify({'success': False, 'message': 'Phiên check-in đã hết hạn, vui lòng chụp lại'}), 404
        if class_id:
            attempt.class_id = str(class_id)
        if location is not None or location_error:
            attempt.location = location
            attempt.location_error = location_error
    else:
        attempt = CheckInAttempt(
            identity_id=user['id'],
            display_name=user['name'],
            contact_email=user['email'],
            class_id=str(class_id) if class_id else None,
            location=location,
            location_error=location_error,
        )
    validator.begin(attempt)

    try:
        image_bytes = read_capture_bytes(data, required=attempt.embedding is None)
        if image_bytes is not None:
            attempt.replace_capture(decode_image(image_bytes), image_bytes)
    except InvalidImage as exc:
        return _outcome_response(
            CheckInOutcome(attempt=attempt, error=exc.code, message=exc.message, retry=exc.retry)
        )

    try:
        outcome = validator.check_in(attempt, record_sample=parse_bool(data.get('record_sample')))
    except Exception as exc:
        current_app.logger.error(f"Error during check-in for {user['id']}: {exc}", exc_info=True)
        face_recognition_logger.log_recognition_error(f"{attempt.attempt_id}: {exc}")
        return jsonify({'success': False, 'message': 'Không thể điểm danh', 'attempt_id': attempt.attempt_id}), 500
    return _outcome_response(outcome)


@attendance_api_bp.route('/check-in/<attempt_id>/cancel', methods=['POST'])
def api_cancel_check_in(attempt_id):
    if not get_services().validator.cancel(attempt_id, g.user['id']):
        return jsonify({'success': False, 'message': 'Không tìm thấy phiên check-in'}), 404
    return jsonify({'success': True, 'attempt_id': attempt_id, 'status': 'cancelled'})


@attendance_api_bp.route('/check-out', methods=['POST'])
def api_check_out():
    data = get_request_data()
    location, location_error = _read_location(data)
    try:
        record = get_services().validator.check_out(
            g.user['id'],
            location=location,
            location_error=location_error,
            class_id=first_value(data, 'class_id', 'classId'),
            record_id=first_value(data, 'record_id', 'recordId'),
        )
    except AttendanceError as exc:
        payload = {'success': False}
        payload.update(exc.to_dict())
        return jsonify(payload), error_status(exc)
    return jsonify({'success': True, 'record': record.to_dict()})


@attendance_api_bp.route('/history', methods=['GET'])
def api_attendance_history():
    records = get_services().presences.list(
        identity_id=g.user['id'],
        class_id=request.args.get('class_id'),
    )
    return jsonify({'success': True, 'records': [r.to_dict() for r in records]})


@attendance_api_bp.route('/presences', methods=['GET'])
@role_required('admin')
def api_list_presences():
    records = get_services().presences.list(
        identity_id=request.args.get('identity_id'),
        class_id=request.args.get('class_id'),
    )
    return jsonify({'success': True, 'records': [r.to_dict() for r in records]})
