"""
Database module for Face Presence
Kho tài liệu JSON trên SQLite: mỗi collection là một nhóm tài liệu có khóa riêng
"""

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from core.errors import StoreUnavailable

logger = logging.getLogger(__name__)


def utc_now_iso():
    return datetime.now(timezone.utc).isoformat()


class DocumentStore:
    """Kho tài liệu tối giản: get / query / scan / set(merge) / update / add / delete."""

    def __init__(self, db_path="face_presence.db", clock=None):
        self.db_path = str(db_path)
        self._clock = clock or utc_now_iso
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.init_database()

    def get_connection(self):
        """Tạo kết nối database"""
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def session(self, immediate=False):
        """Một kết nối cho mỗi thao tác; lỗi SQLite được chuyển thành StoreUnavailable."""
        try:
            conn = self.get_connection()
        except sqlite3.Error as exc:
            logger.error("Không thể mở database %s: %s", self.db_path, exc)
            raise StoreUnavailable(f"Document store unavailable: {exc}") from exc
        try:
            if immediate:
                conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            logger.error("Lỗi database: %s", exc)
            raise StoreUnavailable(f"Document store unavailable: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_database(self):
        """Khởi tạo bảng documents"""
        with self.session() as conn:
            conn.execute('''
                CREATE TABLE IF NOT EXISTS documents (
                    collection VARCHAR(50) NOT NULL,
                    doc_id VARCHAR(128) NOT NULL,
                    data TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    PRIMARY KEY (collection, doc_id)
                )
            ''')
            conn.execute('''
                CREATE INDEX IF NOT EXISTS idx_documents_collection_updated
                ON documents (collection, updated_at)
            ''')
        logger.info("Document store initialized at %s", self.db_path)

    # === ĐỌC ===

    @staticmethod
    def _to_document(row):
        document = json.loads(row["data"])
        document["id"] = row["doc_id"]
        document["createdAt"] = row["created_at"]
        document["updatedAt"] = row["updated_at"]
        return document

    def get(self, collection, doc_id):
        with self.session() as conn:
            row = conn.execute(
                'SELECT * FROM documents WHERE collection = ? AND doc_id = ?',
                (collection, str(doc_id)),
            ).fetchone()
        return self._to_document(row) if row else None

    def all(self, collection):
        """Quét toàn bộ collection, theo thứ tự tạo"""
        with self.session() as conn:
            rows = conn.execute(
                'SELECT * FROM documents WHERE collection = ? ORDER BY created_at, doc_id',
                (collection,),
            ).fetchall()
        return [self._to_document(row) for row in rows]

    def query(self, collection, **filters):
        """Lọc theo trường (so sánh bằng) trên dữ liệu JSON"""
        return [
            doc for doc in self.all(collection)
            if all(doc.get(field) == value for field, value in filters.items())
        ]

    # === GHI ===

    def _write(self, conn, collection, doc_id, data, existing_row):
        now = self._clock()
        payload = {k: v for k, v in data.items() if k not in ("id", "createdAt", "updatedAt")}
        encoded = json.dumps(payload, ensure_ascii=False)
        if existing_row is None:
            conn.execute(
                'INSERT INTO documents (collection, doc_id, data, created_at, updated_at) VALUES (?, ?, ?, ?, ?)',
                (collection, doc_id, encoded, now, now),
            )
            created_at = now
        else:
            conn.execute(
                'UPDATE documents SET data = ?, updated_at = ? WHERE collection = ? AND doc_id = ?',
                (encoded, now, collection, doc_id),
            )
            created_at = existing_row["created_at"]
        document = dict(payload)
        document.update({"id": doc_id, "createdAt": created_at, "updatedAt": now})
        return document

    def _fetch_row(self, conn, collection, doc_id):
        return conn.execute(
            'SELECT * FROM documents WHERE collection = ? AND doc_id = ?',
            (collection, doc_id),
        ).fetchone()

    def set(self, collection, doc_id, data, merge=False):
        """Ghi tài liệu; merge=True giữ lại các trường cũ không có trong data"""
        doc_id = str(doc_id)
        with self.session(immediate=True) as conn:
            row = self._fetch_row(conn, collection, doc_id)
            if merge and row is not None:
                merged = json.loads(row["data"])
                merged.update(data)
                data = merged
            return self._write(conn, collection, doc_id, data, row)

    def mutate(self, collection, doc_id, fn):
        """Đọc-sửa-ghi nguyên tử.

        ``fn`` nhận tài liệu hiện tại (hoặc None) và trả về dữ liệu mới; trả về
        None nghĩa là không ghi. Ngoại lệ từ ``fn`` hủy giao dịch.
        """
        doc_id = str(doc_id)
        with self.session(immediate=True) as conn:
            row = self._fetch_row(conn, collection, doc_id)
            current = self._to_document(row) if row else None
            data = fn(current)
            if data is None:
                return current
            return self._write(conn, collection, doc_id, data, row)

    def update(self, collection, doc_id, fields):
        """Cập nhật một số trường; trả về None nếu tài liệu không tồn tại"""
        def apply(current):
            if current is None:
                return None
            current.update(fields)
            return current

        return self.mutate(collection, doc_id, apply)

    def add(self, collection, data):
        """Thêm tài liệu với id tự sinh"""
        doc_id = uuid.uuid4().hex
        with self.session() as conn:
            return self._write(conn, collection, doc_id, data, None)

    def delete(self, collection, doc_id):
        with self.session() as conn:
            cursor = conn.execute(
                'DELETE FROM documents WHERE collection = ? AND doc_id = ?',
                (collection, str(doc_id)),
            )
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted %s/%s", collection, doc_id)
        return deleted

    def count(self, collection):
        with self.session() as conn:
            row = conn.execute(
                'SELECT COUNT(*) AS n FROM documents WHERE collection = ?', (collection,)
            ).fetchone()
        return int(row["n"])
