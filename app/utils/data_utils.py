"""
Data utilities
Helper functions cho data transformation và validation
"""
from flask import request


def get_request_data():
    """Lấy request data từ JSON hoặc form."""
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def parse_bool(value, default=None):
    """
    Phân tích giá trị boolean từ string, int, hoặc bool.
    Returns: True, False, hoặc default nếu không xác định được.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lower = value.strip().lower()
        if lower in ('true', '1', 'yes', 'on'):
            return True
        if lower in ('false', '0', 'no', 'off'):
            return False
    return default


def first_value(data, *keys):
    """Giá trị đầu tiên khác rỗng trong data theo danh sách key (hỗ trợ snake_case/camelCase)."""
    for key in keys:
        value = data.get(key)
        if value not in (None, ''):
            return value
    return None
