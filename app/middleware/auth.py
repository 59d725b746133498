"""
Authentication middleware
Xử lý authentication, authorization và session management
"""
from functools import wraps

from flask import current_app, g, jsonify, request, session

from logging_config import get_client_ip, security_logger

# Public endpoints không cần authentication
PUBLIC_ENDPOINTS = {
    'auth.create_session',
    'auth.logout',
}


def is_public_endpoint(endpoint):
    """Xác định endpoint có được phép truy cập công khai hay không."""
    if not endpoint:
        return True  # 404/405 do Flask xử lý
    return endpoint in PUBLIC_ENDPOINTS


def resolve_role(email):
    admins = {e.lower() for e in current_app.config.get('ADMIN_EMAILS') or []}
    return 'admin' if email and email.lower() in admins else 'student'


def login_user(claims):
    """Thiết lập session cho người dùng đã xác thực qua identity provider."""
    session.clear()
    session['identity'] = claims.to_dict()
    session.permanent = True


def logout_current_user():
    """Đăng xuất người dùng hiện tại."""
    session.clear()


def current_user_payload(user):
    if not user:
        return None
    return {
        'id': user['id'],
        'name': user['name'],
        'email': user['email'],
        'picture': user.get('picture'),
        'role': user['role'],
    }


def is_admin(user=None):
    user = user if user is not None else getattr(g, 'user', None)
    return bool(user) and user.get('role') == 'admin'


def role_required(*roles):
    """Decorator kiểm tra quyền truy cập dựa trên vai trò."""
    allowed_roles = {role.lower() for role in roles if role}

    def decorator(view_func):
        @wraps(view_func)
        def wrapper(*args, **kwargs):
            user = getattr(g, 'user', None)
            if not user:
                return jsonify({'success': False, 'message': 'Yêu cầu đăng nhập'}), 401

            user_role = (user.get('role') or '').lower()
            if user_role != 'admin' and allowed_roles and user_role not in allowed_roles:
                security_logger.log_unauthorized_access(request.path, get_client_ip(request), user.get('id'))
                return jsonify({'success': False, 'message': 'Không có quyền truy cập'}), 403

            return view_func(*args, **kwargs)

        return wrapper

    return decorator


def load_logged_in_user():
    """Nạp thông tin người dùng và bảo vệ các route yêu cầu đăng nhập."""
    identity = session.get('identity')
    g.user = None
    if identity and identity.get('subjectId'):
        g.user = {
            'id': identity['subjectId'],
            'name': identity.get('displayName') or '',
            'email': identity.get('email') or '',
            'picture': identity.get('pictureUrl'),
            'role': resolve_role(identity.get('email')),
        }

    if is_public_endpoint(request.endpoint):
        return

    if g.user is None:
        return jsonify({'success': False, 'message': 'Yêu cầu đăng nhập'}), 401


def register_auth_middleware(app):
    """Đăng ký authentication middleware với Flask app."""
    app.before_request(load_logged_in_user)
