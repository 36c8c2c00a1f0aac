"""Supplier onboarding schema

Revision ID: 0001_supplier_onboarding
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_supplier_onboarding"
down_revision = None
branch_labels = None
depends_on = None


def _enum(name: str, *values: str) -> sa.Enum:
    # VARCHAR + CHECK, same as the models (native_enum=False)
    return sa.Enum(*values, name=name, native_enum=False, create_constraint=True)


ROLES = ("ADMIN", "INKOPER", "FINANCE", "ERP")
LABELS = ("COLORIGINZ", "PFC")
STATUSES = (
    "INVITATION_SENT",
    "AWAITING_PURCHASER",
    "AWAITING_FINANCE",
    "AWAITING_ERP",
    "COMPLETED",
    "CANCELLED",
)
JSON = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")
NOT_CANCELLED = sa.text("status <> 'CANCELLED'")


def upgrade():
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=120), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("middle_name", sa.String(length=50), nullable=True),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("receive_emails", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("preferred_language", sa.String(length=5), nullable=False, server_default="nl"),
        sa.Column("activation_token", sa.String(length=128), nullable=True),
        sa.Column("activation_expires_at", sa.DateTime(), nullable=True),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("email", name="user_email_key"),
        sa.UniqueConstraint("activation_token", name="user_activation_token_key"),
    )

    op.create_table(
        "user_role",
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role", _enum("user_role_role", *ROLES), primary_key=True),
    )

    op.create_table(
        "user_label",
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("label", _enum("user_label_label", *LABELS), primary_key=True),
    )

    op.create_table(
        "supplier_request",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("supplier_type", _enum("supplier_type", "KOOP", "X_KWEKER", "O_KWEKER"), nullable=False),
        sa.Column("region", _enum("region", "EU", "ROW"), nullable=False),
        sa.Column("label", _enum("label", *LABELS), nullable=False),
        sa.Column("status", _enum("request_status", *STATUSES), nullable=False),
        sa.Column("created_by_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("self_fill", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("supplier_name", sa.String(length=200), nullable=False),
        sa.Column("supplier_email", sa.String(length=254), nullable=False),
        sa.Column("supplier_language", sa.String(length=5), nullable=False, server_default="nl"),
        # company / contact
        sa.Column("company_name", sa.String(length=200), nullable=True),
        sa.Column("address", sa.String(length=500), nullable=True),
        sa.Column("postal_code", sa.String(length=20), nullable=True),
        sa.Column("city", sa.String(length=100), nullable=True),
        sa.Column("country", sa.String(length=100), nullable=True),
        sa.Column("contact_name", sa.String(length=200), nullable=True),
        sa.Column("contact_phone", sa.String(length=50), nullable=True),
        sa.Column("contact_email", sa.String(length=254), nullable=True),
        # financial identifiers
        sa.Column("chamber_of_commerce_number", sa.String(length=50), nullable=True),
        sa.Column("vat_number", sa.String(length=50), nullable=True),
        sa.Column("iban", sa.String(length=50), nullable=True),
        sa.Column("bank_name", sa.String(length=100), nullable=True),
        sa.Column("gln_number", sa.String(length=50), nullable=True),
        # invoice block
        sa.Column("invoice_email", sa.String(length=254), nullable=True),
        sa.Column("invoice_address", sa.String(length=500), nullable=True),
        sa.Column("invoice_postal_code", sa.String(length=20), nullable=True),
        sa.Column("invoice_city", sa.String(length=100), nullable=True),
        sa.Column("invoice_currency", sa.String(length=10), nullable=True),
        # director
        sa.Column("director_name", sa.String(length=200), nullable=True),
        sa.Column("director_function", sa.String(length=100), nullable=True),
        sa.Column("director_date_of_birth", sa.String(length=20), nullable=True),
        sa.Column("director_passport_number", sa.String(length=50), nullable=True),
        # auction
        sa.Column("auction_number_rfh", sa.String(length=50), nullable=True),
        sa.Column("sales_sheet_email", sa.String(length=254), nullable=True),
        sa.Column("mandate_rfh", sa.Boolean(), nullable=True),
        sa.Column("api_key_floriday", sa.String(length=200), nullable=True),
        # purchaser / finance / erp
        sa.Column("incoterm", sa.String(length=3), nullable=True),
        sa.Column("commission_percentage", sa.Float(), nullable=True),
        sa.Column("payment_term", sa.String(length=100), nullable=True),
        sa.Column("account_manager", sa.String(length=200), nullable=True),
        sa.Column("creditor_number", sa.String(length=50), nullable=True),
        sa.Column("kbt_code", sa.String(length=50), nullable=True),
        # invitation
        sa.Column("invitation_token", sa.String(length=128), nullable=True),
        sa.Column("invitation_expires_at", sa.DateTime(), nullable=True),
        sa.Column("invitation_sent_at", sa.DateTime(), nullable=True),
        sa.Column("supplier_saved_at", sa.DateTime(), nullable=True),
        sa.Column("supplier_submitted_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("invitation_token", name="supplier_request_invitation_token_key"),
    )
    op.create_index("ix_supplier_request_label", "supplier_request", ["label"])
    op.create_index("ix_supplier_request_status", "supplier_request", ["status"])
    op.create_index("ix_supplier_request_created_by_id", "supplier_request", ["created_by_id"])

    # Unique among non-cancelled requests only.
    op.create_index(
        "uq_supplier_request_creditor_number_active",
        "supplier_request",
        ["creditor_number"],
        unique=True,
        postgresql_where=NOT_CANCELLED,
        sqlite_where=NOT_CANCELLED,
    )
    op.create_index(
        "uq_supplier_request_kbt_code_active",
        "supplier_request",
        ["kbt_code"],
        unique=True,
        postgresql_where=NOT_CANCELLED,
        sqlite_where=NOT_CANCELLED,
    )

    op.create_table(
        "supplier_file",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "request_id",
            sa.Uuid(),
            sa.ForeignKey("supplier_request.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("file_type", _enum("file_type", "KVK", "PASSPORT", "BANK_DETAILS", "OTHER"), nullable=False),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("file_path", sa.String(length=500), nullable=False),
        sa.Column("sha256", sa.String(length=64), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(), nullable=False),
        sa.Column("uploaded_by_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="SET NULL"), nullable=True),
    )
    op.create_index("ix_supplier_file_request_id", "supplier_file", ["request_id"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "request_id",
            sa.Uuid(),
            sa.ForeignKey("supplier_request.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("action", sa.String(length=50), nullable=False),
        sa.Column("details", JSON, nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="SET NULL"), nullable=True),
    )
    op.create_index("ix_audit_log_request_id", "audit_log", ["request_id"])
    op.create_index("ix_audit_log_created_at", "audit_log", ["created_at"])


def downgrade():
    op.drop_index("ix_audit_log_created_at", table_name="audit_log")
    op.drop_index("ix_audit_log_request_id", table_name="audit_log")
    op.drop_table("audit_log")

    op.drop_index("ix_supplier_file_request_id", table_name="supplier_file")
    op.drop_table("supplier_file")

    op.drop_index("uq_supplier_request_kbt_code_active", table_name="supplier_request")
    op.drop_index("uq_supplier_request_creditor_number_active", table_name="supplier_request")
    op.drop_index("ix_supplier_request_created_by_id", table_name="supplier_request")
    op.drop_index("ix_supplier_request_status", table_name="supplier_request")
    op.drop_index("ix_supplier_request_label", table_name="supplier_request")
    op.drop_table("supplier_request")

    op.drop_table("user_label")
    op.drop_table("user_role")
    op.drop_table("user")
