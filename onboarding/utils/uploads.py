# onboarding/utils/uploads.py
from __future__ import annotations

import json

from flask import request

from onboarding.constants import FileType
from onboarding.exceptions import InvalidFieldError
from onboarding.services.commands import UploadedFile

# multipart field name -> document type
UPLOAD_FIELDS = {
    "kvk": FileType.KVK,
    "passport": FileType.PASSPORT,
    "bankDetails": FileType.BANK_DETAILS,
    "other": FileType.OTHER,
}


def request_payload() -> dict:
    """
    JSON body, or for multipart posts the JSON in the ``data`` form field
    merged over the plain form fields.
    """
    if request.is_json:
        return request.get_json(silent=True) or {}

    data = {k: v for k, v in request.form.items() if k != "data"}
    raw = request.form.get("data")
    if raw:
        try:
            parsed = json.loads(raw)
        except ValueError:
            raise InvalidFieldError("Malformed form data.", field="data") from None
        if not isinstance(parsed, dict):
            raise InvalidFieldError("Malformed form data.", field="data")
        data.update(parsed)
    return data


def collect_uploads() -> tuple[UploadedFile, ...]:
    uploads = []
    for field, file_type in UPLOAD_FIELDS.items():
        for storage in request.files.getlist(field):
            if not storage or not storage.filename:
                continue
            uploads.append(UploadedFile(file_type=file_type, file_name=storage.filename, data=storage.read()))
    return tuple(uploads)
