# config.py - Configuration and constants for the face presence service

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name, default='0'):
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def _env_list(name, default=''):
    return [item.strip() for item in os.getenv(name, default).split(',') if item.strip()]


# Flask app configuration
SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
MAX_CONTENT_LENGTH = int(os.getenv('MAX_CONTENT_LENGTH', str(16 * 1024 * 1024)))  # 16MB

# Storage
DATA_DIR = Path(os.getenv('DATA_DIR', 'data'))
DATABASE_PATH = os.getenv('DATABASE_PATH', str(DATA_DIR / 'face_presence.db'))
FACE_IMAGE_DIR = os.getenv('FACE_IMAGE_DIR', str(DATA_DIR / 'faces'))

# Logging
LOG_DIR = os.getenv('LOG_DIR', 'logs')
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

# Upload configuration
ALLOWED_EXTENSIONS = {'jpg', 'jpeg', 'png', 'webp'}

# Face recognition
FACE_MATCH_THRESHOLD = float(os.getenv('FACE_MATCH_THRESHOLD', '0.6'))
# Thứ tự thử các backend embedding
EMBEDDING_BACKENDS = _env_list('EMBEDDING_BACKENDS', 'face_recognition')
DEEPFACE_MODEL_NAME = os.getenv('DEEPFACE_MODEL_NAME', 'Facenet')
FACE_DETECTION_MODEL = os.getenv('FACE_DETECTION_MODEL', 'hog')

# Attendance validation
RECORD_ATTEMPT_SAMPLES = _env_bool('RECORD_ATTEMPT_SAMPLES', '1')
STRICT_FACE_MATCH = _env_bool('STRICT_FACE_MATCH', '0')
LOCATION_MAX_AGE_SECONDS = float(os.getenv('LOCATION_MAX_AGE_SECONDS', '60'))
CHECKIN_GRACE_MINUTES = float(os.getenv('CHECKIN_GRACE_MINUTES', '15'))
LIVENESS_CHECK = _env_bool('LIVENESS_CHECK', '0')
BLUR_THRESHOLD = float(os.getenv('BLUR_THRESHOLD', '100'))
ATTEMPT_TTL_SECONDS = float(os.getenv('ATTEMPT_TTL_SECONDS', '600'))

# External services
ANTIFRAUD_BACKEND_URL = os.getenv('ANTIFRAUD_BACKEND_URL', '')
IDENTITY_USERINFO_URL = os.getenv('IDENTITY_USERINFO_URL', 'https://www.googleapis.com/oauth2/v3/userinfo')
HTTP_TIMEOUT_SECONDS = float(os.getenv('HTTP_TIMEOUT_SECONDS', '10'))

# Quản trị viên: danh sách email, phân tách bằng dấu phẩy
ADMIN_EMAILS = [email.lower() for email in _env_list('ADMIN_EMAILS')]
