# onboarding/services/repository.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError

from onboarding.constants import FileType, RequestStatus, Role
from onboarding.exceptions import ConflictError, DuplicateValueError
from onboarding.models import AuditLog, SupplierFile, SupplierRequest, User, UserRole

logger = logging.getLogger(__name__)

# Columns backed by a unique index, checked in this order when mapping IntegrityError.
_UNIQUE_COLUMNS = ("creditor_number", "kbt_code", "invitation_token")


@dataclass(frozen=True)
class FileMeta:
    file_type: FileType
    file_name: str
    file_path: str
    sha256: str | None = None
    uploaded_at: datetime | None = None
    uploaded_by_id: int | None = None


def _duplicate_field(exc: IntegrityError, patch: dict) -> str | None:
    message = str(getattr(exc, "orig", exc))
    for column in _UNIQUE_COLUMNS:
        if column in message:
            return column
    for column in _UNIQUE_COLUMNS:
        if patch.get(column):
            return column
    return None


class RequestRepository:
    """
    Persistence for supplier requests on top of a SQLAlchemy session.

    Nothing here commits on its own: the lifecycle owns the unit of work and
    calls ``commit``/``rollback`` once per action.
    """

    def __init__(self, session):
        self.session = session

    # ---------------------------------------------------------
    # Reads
    # ---------------------------------------------------------
    def get(self, request_id) -> SupplierRequest | None:
        if request_id is None:
            return None
        return self.session.get(SupplierRequest, request_id)

    def get_by_invitation_token(self, token: str) -> SupplierRequest | None:
        token = (token or "").strip()
        if not token:
            return None
        stmt = sa.select(SupplierRequest).where(SupplierRequest.invitation_token == token)
        return self.session.scalars(stmt).first()

    def list_for_labels(self, labels) -> list[SupplierRequest]:
        stmt = sa.select(SupplierRequest).order_by(SupplierRequest.created_at.desc())
        if labels is not None:
            stmt = stmt.where(SupplierRequest.label.in_(list(labels)))
        return list(self.session.scalars(stmt))

    def find_users_by_role(self, role: Role, *, active_only: bool = True) -> list[User]:
        stmt = (
            sa.select(User)
            .join(UserRole, UserRole.user_id == User.id)
            .where(UserRole.role == Role(role))
            .order_by(User.id)
        )
        if active_only:
            stmt = stmt.where(User.is_active.is_(True))
        return list(self.session.scalars(stmt).unique())

    def get_user(self, user_id) -> User | None:
        if user_id is None:
            return None
        return self.session.get(User, user_id)

    def count_by_creditor_number(self, value: str, exclude_id=None) -> int:
        return self._count_active(SupplierRequest.creditor_number == value, exclude_id)

    def count_by_kbt_code(self, value: str, exclude_id=None) -> int:
        return self._count_active(SupplierRequest.kbt_code == value, exclude_id)

    def count_active_suppliers(self, name: str, email: str) -> int:
        clause = sa.or_(
            sa.func.lower(SupplierRequest.supplier_name) == (name or "").strip().lower(),
            sa.func.lower(SupplierRequest.supplier_email) == (email or "").strip().lower(),
        )
        return self._count_active(clause, None)

    def _count_active(self, clause, exclude_id) -> int:
        stmt = (
            sa.select(sa.func.count())
            .select_from(SupplierRequest)
            .where(clause, SupplierRequest.status != RequestStatus.CANCELLED)
        )
        if exclude_id is not None:
            stmt = stmt.where(SupplierRequest.id != exclude_id)
        return int(self.session.scalar(stmt) or 0)

    def audit_history(self, request_id) -> list[AuditLog]:
        stmt = (
            sa.select(AuditLog)
            .where(AuditLog.request_id == request_id)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        )
        return list(self.session.scalars(stmt))

    # ---------------------------------------------------------
    # Writes
    # ---------------------------------------------------------
    def add(self, request: SupplierRequest) -> SupplierRequest:
        self.session.add(request)
        try:
            self.session.flush()
        except IntegrityError as exc:
            field = _duplicate_field(exc, {"invitation_token": request.invitation_token})
            raise DuplicateValueError(f"Duplicate value for {field or 'request'}.", field=field) from exc
        return request

    def update(self, request_id, expected_status: RequestStatus, patch: dict) -> SupplierRequest:
        """
        Conditional write: applies ``patch`` only while the row still has
        ``expected_status``. Zero matched rows means another transition won.
        """
        stmt = (
            sa.update(SupplierRequest)
            .where(
                SupplierRequest.id == request_id,
                SupplierRequest.status == RequestStatus(expected_status),
            )
            .values(**patch)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.session.execute(stmt)
        except IntegrityError as exc:
            field = _duplicate_field(exc, patch)
            raise DuplicateValueError(f"This {field or 'value'} is already in use.", field=field) from exc

        if result.rowcount != 1:
            raise ConflictError("The request was modified concurrently. Reload and try again.")

        return self.session.get(SupplierRequest, request_id, populate_existing=True)

    def create_file(self, request_id, meta: FileMeta) -> SupplierFile:
        record = SupplierFile(
            request_id=request_id,
            file_type=meta.file_type,
            file_name=meta.file_name,
            file_path=meta.file_path,
            sha256=meta.sha256,
            uploaded_by_id=meta.uploaded_by_id,
        )
        if meta.uploaded_at is not None:
            record.uploaded_at = meta.uploaded_at
        self.session.add(record)
        return record

    def append_audit_log(self, entry: AuditLog) -> AuditLog:
        self.session.add(entry)
        return entry

    # ---------------------------------------------------------
    # Unit of work
    # ---------------------------------------------------------
    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
