from .enums import (
    AuditAction,
    FileType,
    Incoterm,
    Label,
    Language,
    Region,
    RequestStatus,
    Role,
    SupplierType,
    TERMINAL_STATUSES,
)

__all__ = [
    "AuditAction",
    "FileType",
    "Incoterm",
    "Label",
    "Language",
    "Region",
    "RequestStatus",
    "Role",
    "SupplierType",
    "TERMINAL_STATUSES",
]
