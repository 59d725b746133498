"""
Cấu hình logging cho dịch vụ điểm danh bằng khuôn mặt
"""

import logging
import logging.handlers
from datetime import datetime
from pathlib import Path


def setup_logging(app, log_level='INFO', log_dir='logs', max_log_size=10*1024*1024, backup_count=5):
    """
    Thiết lập logging cho ứng dụng Flask

    Args:
        app: Flask app instance
        log_level: Mức độ log (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Thư mục chứa file log
        max_log_size: Kích thước tối đa của file log (bytes)
        backup_count: Số lượng file log backup
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    level = getattr(logging, str(log_level).upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    def rotating(filename, handler_level):
        handler = logging.handlers.RotatingFileHandler(
            log_dir / filename,
            maxBytes=max_log_size,
            backupCount=backup_count,
            encoding='utf-8'
        )
        handler.setLevel(handler_level)
        handler.setFormatter(formatter)
        return handler

    file_handler = rotating('face_presence.log', level)
    error_handler = rotating('errors.log', logging.ERROR)
    security_handler = rotating('security.log', logging.INFO)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Xóa handlers cũ (đóng file trước)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(error_handler)

    security = logging.getLogger('security')
    for handler in security.handlers[:]:
        security.removeHandler(handler)
        handler.close()
    security.addHandler(security_handler)
    security.setLevel(logging.INFO)

    for name in ('face_recognition', 'database'):
        logging.getLogger(name).setLevel(logging.INFO)

    app.logger.setLevel(level)

    app.logger.info("=" * 50)
    app.logger.info("FACE PRESENCE STARTUP")
    app.logger.info(f"Timestamp: {datetime.now().isoformat()}")
    app.logger.info(f"Log Level: {logging.getLevelName(level)}")
    app.logger.info(f"Log Directory: {log_dir.absolute()}")
    app.logger.info("=" * 50)


class SecurityLogger:
    """Logger chuyên dụng cho các sự kiện bảo mật"""

    def __init__(self):
        self.logger = logging.getLogger('security')

    def log_login(self, subject, ip_address, success=True):
        """Log sự kiện đăng nhập"""
        status = "SUCCESS" if success else "FAILED"
        self.logger.info(f"LOGIN {status} - Subject: {subject}, IP: {ip_address}")

    def log_logout(self, subject, ip_address):
        self.logger.info(f"LOGOUT - Subject: {subject}, IP: {ip_address}")

    def log_unauthorized_access(self, endpoint, ip_address, user_id=None):
        """Log truy cập trái phép"""
        user_info = f", User: {user_id}" if user_id else ""
        self.logger.warning(f"UNAUTHORIZED ACCESS - Endpoint: {endpoint}, IP: {ip_address}{user_info}")

    def log_admin_action(self, admin_user, action, details=None):
        """Log hành động của admin"""
        details_info = f", Details: {details}" if details else ""
        self.logger.info(f"ADMIN ACTION - User: {admin_user}, Action: {action}{details_info}")


class FaceRecognitionLogger:
    """Logger chuyên dụng cho nhận diện và điểm danh"""

    def __init__(self):
        self.logger = logging.getLogger('face_recognition')

    def log_enrollment(self, identity_id, sample_count):
        self.logger.info(f"Face enrolled - Identity: {identity_id}, Samples: {sample_count}")

    def log_check_in(self, identity_id, status, recognized, distance=None):
        """Log điểm danh"""
        distance_info = f", Distance: {distance:.3f}" if distance is not None else ""
        self.logger.info(
            f"Check-in recorded - Identity: {identity_id}, Status: {status}, Recognized: {recognized}{distance_info}"
        )

    def log_rejection(self, identity_id, code, message):
        self.logger.info(f"Check-in rejected - Identity: {identity_id}, Code: {code}, Reason: {message}")

    def log_recognition_error(self, error_message):
        """Log lỗi nhận diện"""
        self.logger.error(f"Recognition error - {error_message}")


# Các instance logger toàn cục
security_logger = SecurityLogger()
face_recognition_logger = FaceRecognitionLogger()


def get_client_ip(request):
    """Lấy IP address của client"""
    if request.headers.get('X-Forwarded-For'):
        return request.headers.get('X-Forwarded-For').split(',')[0].strip()
    elif request.headers.get('X-Real-IP'):
        return request.headers.get('X-Real-IP')
    else:
        return request.remote_addr
