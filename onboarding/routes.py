# onboarding/routes.py
from __future__ import annotations

import io
import mimetypes

import sqlalchemy as sa
from flask import Blueprint, Response, abort, current_app, jsonify, request, send_file
from flask_login import current_user, login_required

from .constants import RequestStatus, Role
from .exceptions import ForbiddenRoleError, InvalidFieldError, MissingFieldError
from .extensions import db
from .models import SupplierFile
from .services.commands import Actor, parse_action, parse_create, parse_uuid
from .services.exact_xml import render_exact_xml
from .services.registry import get_lifecycle, get_repository, get_services
from .services.supplier_types import visible_sections
from .utils.uploads import collect_uploads, request_payload

main = Blueprint("main", __name__, url_prefix="/api")


# ======================
# Helpers
# ======================
def _actor() -> Actor:
    return Actor.from_user(current_user)


def _visible_request_or_404(request_id):
    """Requests outside the actor's labels are reported as missing."""
    supplier_request = get_repository().get(request_id)
    if supplier_request is None or not _actor().can_view(supplier_request.label):
        abort(404)
    return supplier_request


def _request_json(supplier_request, *, include_children: bool = False) -> dict:
    data = supplier_request.to_dict(include_children=include_children)
    data["visibleSections"] = sorted(visible_sections(supplier_request.supplier_type, supplier_request.region))
    return data


# ======================
# Requests
# ======================
@main.route("/requests", methods=["POST"])
@login_required
def create_request():
    command = parse_create(request_payload())
    supplier_request = get_lifecycle().handle(command, _actor())
    return jsonify(_request_json(supplier_request)), 201


@main.route("/requests", methods=["GET"])
@login_required
def list_requests():
    actor = _actor()
    rows = get_repository().list_for_labels(None if actor.is_admin else actor.labels)

    status = (request.args.get("status") or "").strip().upper()
    if status:
        try:
            wanted = RequestStatus(status)
        except ValueError:
            raise InvalidFieldError("Unknown status filter.", field="status") from None
        rows = [r for r in rows if r.status is wanted]

    return jsonify([_request_json(r) for r in rows])


@main.route("/requests/<request_id>", methods=["GET"])
@login_required
def get_request(request_id: str):
    supplier_request = _visible_request_or_404(parse_uuid(request_id))
    return jsonify(_request_json(supplier_request, include_children=True))


@main.route("/requests/<request_id>", methods=["PATCH"])
@login_required
def update_request(request_id: str):
    command = parse_action(request_id, request_payload(), collect_uploads())
    supplier_request = get_lifecycle().handle(command, _actor())
    return jsonify(_request_json(supplier_request))


# ======================
# Sanctions screening (advisory, out-of-band)
# ======================
@main.route("/requests/<request_id>/sanctions-check", methods=["POST"])
@login_required
def sanctions_check(request_id: str):
    supplier_request = _visible_request_or_404(parse_uuid(request_id))

    director = None
    if supplier_request.director_name:
        director = {
            "name": supplier_request.director_name,
            "date_of_birth": supplier_request.director_date_of_birth,
            "passport_number": supplier_request.director_passport_number,
        }

    result = get_services().sanctions.check(
        supplier_request.company_name or supplier_request.supplier_name,
        supplier_request.country,
        director,
    )
    if result is None:
        current_app.logger.warning("Sanctions check unavailable for request %s", supplier_request.id)
        return jsonify({"error": "Sanctions service is currently unavailable.", "available": False}), 503

    return jsonify(result.to_dict())


# ======================
# Exact Globe export (ERP hand-off)
# ======================
@main.route("/requests/<request_id>/exact-xml", methods=["GET"])
@login_required
def exact_xml(request_id: str):
    supplier_request = _visible_request_or_404(parse_uuid(request_id))
    if not _actor().has_any_role(Role.FINANCE, Role.INKOPER):
        raise ForbiddenRoleError("Only Finance or purchasing can export to Exact.")
    if not supplier_request.company_name:
        raise MissingFieldError("No supplier data available yet.", field="companyName")

    return Response(
        render_exact_xml(supplier_request),
        content_type="application/xml; charset=utf-8",
        headers={"Content-Disposition": "inline"},
    )


# ======================
# Uploaded files (authenticated download)
# ======================
@main.route("/files/<request_id>/<path:name>", methods=["GET"])
@login_required
def download_file(request_id: str, name: str):
    rid = parse_uuid(request_id)
    _visible_request_or_404(rid)

    record = db.session.scalars(
        sa.select(SupplierFile).where(
            SupplierFile.request_id == rid,
            SupplierFile.file_path == f"{rid}/{name}",
        )
    ).first()
    if record is None:
        abort(404)

    storage = get_services().storage
    if not storage.exists(record.file_path):
        current_app.logger.warning("File %s is registered but missing from storage", record.file_path)
        abort(404)

    mimetype = mimetypes.guess_type(record.file_name)[0] or "application/octet-stream"
    return send_file(
        io.BytesIO(storage.load(record.file_path)),
        mimetype=mimetype,
        download_name=record.file_name,
        as_attachment=False,
    )
