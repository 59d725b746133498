"""
Authentication routes
Đổi access token của identity provider lấy session ứng dụng
"""
from flask import Blueprint, g, jsonify, request

from app.globals import get_services
from app.middleware.auth import current_user_payload, load_logged_in_user, login_user, logout_current_user
from app.utils import first_value, get_request_data
from core.errors import IdentityError
from logging_config import get_client_ip, security_logger

auth_bp = Blueprint('auth', __name__, url_prefix='/auth')


@auth_bp.route('/session', methods=['POST'])
def create_session():
    data = get_request_data()
    token = first_value(data, 'access_token', 'accessToken')
    if not token:
        header = request.headers.get('Authorization', '')
        if header.lower().startswith('bearer '):
            token = header[7:].strip()
    if not token:
        return jsonify({'success': False, 'message': 'Thiếu access token'}), 400

    ip_address = get_client_ip(request)
    try:
        claims = get_services().identity_client.fetch_claims(token)
    except IdentityError as exc:
        security_logger.log_login('unknown', ip_address, success=False)
        return jsonify({'success': False, 'error': exc.code, 'message': exc.message}), 401

    login_user(claims)
    load_logged_in_user()
    security_logger.log_login(claims.subject_id, ip_address)
    return jsonify({'success': True, 'user': current_user_payload(g.user)})


@auth_bp.route('/logout', methods=['POST'])
def logout():
    user = getattr(g, 'user', None)
    if user:
        security_logger.log_logout(user['id'], get_client_ip(request))
    logout_current_user()
    return jsonify({'success': True})


@auth_bp.route('/me', methods=['GET'])
def me():
    return jsonify({'success': True, 'user': current_user_payload(g.user)})
