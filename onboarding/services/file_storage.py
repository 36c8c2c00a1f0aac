# onboarding/services/file_storage.py
from __future__ import annotations

import hashlib
import os
import uuid
from dataclasses import dataclass

from werkzeug.utils import secure_filename


# =========================================================
# Types
# =========================================================
@dataclass(frozen=True)
class StoredFile:
    path: str  # storage key, relative to the upload dir
    sha256: str


# =========================================================
# Storage helpers
# =========================================================
def upload_dir_for(app) -> str:
    """
    Local storage by default. Priority:
      1) Flask config: UPLOAD_DIR
      2) instance_path/uploads
    """
    base = app.config.get("UPLOAD_DIR")
    if not base:
        base = os.path.join(app.instance_path, "uploads")
    os.makedirs(base, exist_ok=True)
    return base


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FileStorage:
    """
    Stores uploaded supplier documents on local disk.

    Keys look like ``<request_id>/<random>_<safe name>`` so two uploads with
    the same name never overwrite each other.
    """

    def __init__(self, base_dir: str):
        self.base_dir = base_dir

    def _abs(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.base_dir, key))
        root = os.path.abspath(self.base_dir)
        if os.path.commonpath([path, root]) != root:
            raise ValueError("Storage key escapes the upload directory.")
        return path

    def store(self, request_id, data: bytes, file_name: str) -> StoredFile:
        name = secure_filename(file_name or "") or "upload.bin"
        key = f"{request_id}/{uuid.uuid4().hex[:12]}_{name}"

        abs_path = self._abs(key)
        os.makedirs(os.path.dirname(abs_path), exist_ok=True)
        with open(abs_path, "wb") as f:
            f.write(data)

        return StoredFile(path=key, sha256=sha256_hex(data))

    def load(self, key: str) -> bytes:
        with open(self._abs(key), "rb") as f:
            return f.read()

    def exists(self, key: str) -> bool:
        try:
            return os.path.isfile(self._abs(key))
        except ValueError:
            return False
