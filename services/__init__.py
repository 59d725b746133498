"""
Services for the face presence pipeline.

This package provides:
- face_recognition (dlib) embeddings and image decoding (face_service)
- quality/liveness heuristics and the remote anti-fraud client (antispoof_service)
- the identity provider client (identity_service)
- repositories over the document store (repositories)
"""

# Tránh import nặng (dlib, OpenCV) ngay khi package được import.
# Các module cụ thể sẽ được import tường minh ở nơi cần dùng.
