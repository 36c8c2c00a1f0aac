# onboarding/services/audit.py
from __future__ import annotations

import enum
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import event
from sqlalchemy.orm import object_session

from onboarding.exceptions import AuditImmutableError
from onboarding.models import AuditLog

from .clock import Clock


# =========================================================
# Append-only guard
# =========================================================
@event.listens_for(AuditLog, "before_update")
def _reject_audit_update(mapper, connection, target):
    session = object_session(target)
    # before_update also fires for rows that are only "dirty" through a relationship
    if session is not None and not session.is_modified(target, include_collections=False):
        return
    raise AuditImmutableError(f"AuditLog {target.id} is immutable and cannot be updated.")


@event.listens_for(AuditLog, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise AuditImmutableError(f"AuditLog {target.id} is immutable and cannot be deleted.")


def _json_safe(value):
    """Snapshot ``details`` into plain JSON types."""
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_json_safe(v) for v in value]
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    return value


# =========================================================
# AuditTrail
# =========================================================
class AuditTrail:
    """Appends audit entries to the current unit of work. Never commits."""

    def __init__(self, repository, clock: Clock):
        self.repository = repository
        self.clock = clock

    def record(self, request_id, action, details: dict | None = None, user_id: int | None = None) -> AuditLog:
        entry = AuditLog(
            request_id=request_id,
            action=action.value if isinstance(action, enum.Enum) else str(action),
            details=_json_safe(details) if details is not None else None,
            created_at=self.clock.now(),
            user_id=user_id,
        )
        return self.repository.append_audit_log(entry)

    def history(self, request_id) -> list[AuditLog]:
        """Entries for one request, newest first."""
        return self.repository.audit_history(request_id)

    def latest(self, request_id, action) -> AuditLog | None:
        action_value = action.value if isinstance(action, enum.Enum) else str(action)
        for entry in self.history(request_id):
            if entry.action == action_value:
                return entry
        return None
