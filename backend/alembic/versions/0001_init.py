"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


ROLE = sa.Enum("PATIENT", "DOCTOR", "ADMIN", "UNASSIGNED", name="role")
PACKAGE_TYPE = sa.Enum("STARTER", "FAMILY", "WELLNESS", name="packagetype")
PACKAGE_STATUS = sa.Enum("ACTIVE", "EXPIRED", name="packagestatus")
LEDGER_KIND = sa.Enum("WELCOME_BONUS", "PURCHASE", "SPENT", "REFUND", name="ledgerkind")
APPOINTMENT_STATUS = sa.Enum(
    "SCHEDULED", "CONFIRMED", "IN_PROGRESS", "COMPLETED", "CANCELLED", "NO_SHOW", name="appointmentstatus"
)
FUNDING_SOURCE = sa.Enum("WELCOME_BONUS", "PACKAGE", name="fundingsource")


def _inspector():
    from sqlalchemy import inspect as sa_inspect
    return sa_inspect(op.get_bind())


def upgrade() -> None:
    inspector = _inspector()
    existing_tables = set(inspector.get_table_names())

    def existing_indexes(table: str) -> set[str]:
        if table not in existing_tables:
            return set()
        return {idx["name"] for idx in inspector.get_indexes(table)}

    if "accounts" not in existing_tables:
        op.create_table(
            "accounts",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("role", ROLE, nullable=False),
            sa.Column("credits", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.CheckConstraint("credits >= 0", name="ck_accounts_credits_non_negative"),
        )
    idxs = existing_indexes("accounts")
    if "ix_accounts_id" not in idxs:
        op.create_index("ix_accounts_id", "accounts", ["id"])

    if "credit_packages" not in existing_tables:
        op.create_table(
            "credit_packages",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("account_id", sa.String(), sa.ForeignKey("accounts.id"), nullable=False),
            sa.Column("package_type", PACKAGE_TYPE, nullable=False),
            sa.Column("plan_version", sa.String(), nullable=True),
            sa.Column("consultations", sa.Integer(), nullable=False),
            sa.Column("total_credits", sa.Integer(), nullable=False),
            sa.Column("credits_used", sa.Integer(), nullable=False),
            sa.Column("credits_remaining", sa.Integer(), nullable=False),
            sa.Column("price_ksh", sa.Integer(), nullable=False),
            sa.Column("price_per_consultation", sa.Integer(), nullable=False),
            sa.Column("purchased_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("valid_until", sa.DateTime(timezone=True), nullable=False),
            sa.Column("status", PACKAGE_STATUS, nullable=False),
            sa.Column("is_shareable", sa.Boolean(), nullable=False),
            sa.Column("source", sa.String(), nullable=False),
            sa.Column("replaced_package_id", sa.Integer(), sa.ForeignKey("credit_packages.id"), nullable=True),
            sa.CheckConstraint("credits_used >= 0 AND credits_used <= total_credits", name="ck_packages_used_range"),
            sa.CheckConstraint(
                "credits_remaining >= 0 AND credits_remaining <= total_credits", name="ck_packages_remaining_range"
            ),
            sa.CheckConstraint("credits_used + credits_remaining = total_credits", name="ck_packages_conservation"),
        )
    idxs = existing_indexes("credit_packages")
    if "ix_credit_packages_id" not in idxs:
        op.create_index("ix_credit_packages_id", "credit_packages", ["id"])
    if "ix_credit_packages_account_id" not in idxs:
        op.create_index("ix_credit_packages_account_id", "credit_packages", ["account_id"])
    if "ix_credit_packages_package_type" not in idxs:
        op.create_index("ix_credit_packages_package_type", "credit_packages", ["package_type"])
    if "ix_credit_packages_purchased_at" not in idxs:
        op.create_index("ix_credit_packages_purchased_at", "credit_packages", ["purchased_at"])
    if "ix_credit_packages_status" not in idxs:
        op.create_index("ix_credit_packages_status", "credit_packages", ["status"])

    if "availability_slots" not in existing_tables:
        op.create_table(
            "availability_slots",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("doctor_id", sa.String(), sa.ForeignKey("accounts.id"), nullable=False),
            sa.Column("day_of_week", sa.Integer(), nullable=False),
            sa.Column("start_time", sa.String(), nullable=False),
            sa.Column("end_time", sa.String(), nullable=False),
            sa.Column("is_available", sa.Boolean(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("availability_slots")
    if "ix_availability_slots_id" not in idxs:
        op.create_index("ix_availability_slots_id", "availability_slots", ["id"])
    if "ix_availability_slots_doctor_id" not in idxs:
        op.create_index("ix_availability_slots_doctor_id", "availability_slots", ["doctor_id"])
    if "ix_availability_slots_day_of_week" not in idxs:
        op.create_index("ix_availability_slots_day_of_week", "availability_slots", ["day_of_week"])

    if "appointments" not in existing_tables:
        op.create_table(
            "appointments",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("patient_id", sa.String(), sa.ForeignKey("accounts.id"), nullable=False),
            sa.Column("doctor_id", sa.String(), sa.ForeignKey("accounts.id"), nullable=False),
            sa.Column("slot_id", sa.Integer(), sa.ForeignKey("availability_slots.id"), nullable=True),
            sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
            sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
            sa.Column("status", APPOINTMENT_STATUS, nullable=False),
            sa.Column("patient_description", sa.Text(), nullable=True),
            sa.Column("credits_charged", sa.Integer(), nullable=False),
            sa.Column("funding_source", FUNDING_SOURCE, nullable=True),
            sa.Column("package_id", sa.Integer(), sa.ForeignKey("credit_packages.id"), nullable=True),
            sa.Column("package_price", sa.Integer(), nullable=False),
            sa.Column("platform_commission", sa.Float(), nullable=True),
            sa.Column("doctor_earnings", sa.Float(), nullable=True),
            sa.Column("platform_earnings", sa.Float(), nullable=True),
            sa.Column("credits_refunded", sa.Integer(), nullable=False),
            sa.Column("cancelled_by", ROLE, nullable=True),
            sa.Column("cancellation_reason", sa.Text(), nullable=True),
            sa.Column("notes", sa.Text(), nullable=True),
            sa.Column("diagnosis", sa.Text(), nullable=True),
            sa.Column("prescription", sa.Text(), nullable=True),
            sa.Column("has_review", sa.Boolean(), nullable=False),
            sa.Column("actual_duration_minutes", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("no_show_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("rescheduled_at", sa.DateTime(timezone=True), nullable=True),
        )
    idxs = existing_indexes("appointments")
    if "ix_appointments_id" not in idxs:
        op.create_index("ix_appointments_id", "appointments", ["id"])
    if "ix_appointments_patient_id" not in idxs:
        op.create_index("ix_appointments_patient_id", "appointments", ["patient_id"])
    if "ix_appointments_doctor_id" not in idxs:
        op.create_index("ix_appointments_doctor_id", "appointments", ["doctor_id"])
    if "ix_appointments_slot_id" not in idxs:
        op.create_index("ix_appointments_slot_id", "appointments", ["slot_id"])
    if "ix_appointments_start_time" not in idxs:
        op.create_index("ix_appointments_start_time", "appointments", ["start_time"])
    if "ix_appointments_status" not in idxs:
        op.create_index("ix_appointments_status", "appointments", ["status"])

    if "slot_reservations" not in existing_tables:
        op.create_table(
            "slot_reservations",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("slot_id", sa.Integer(), sa.ForeignKey("availability_slots.id"), nullable=False),
            sa.Column("doctor_id", sa.String(), sa.ForeignKey("accounts.id"), nullable=False),
            sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
            sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
            sa.Column("appointment_id", sa.Integer(), sa.ForeignKey("appointments.id"), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.UniqueConstraint("doctor_id", "start_time", name="uq_slot_reservations_doctor_start"),
        )
    idxs = existing_indexes("slot_reservations")
    if "ix_slot_reservations_id" not in idxs:
        op.create_index("ix_slot_reservations_id", "slot_reservations", ["id"])
    if "ix_slot_reservations_slot_id" not in idxs:
        op.create_index("ix_slot_reservations_slot_id", "slot_reservations", ["slot_id"])
    if "ix_slot_reservations_doctor_id" not in idxs:
        op.create_index("ix_slot_reservations_doctor_id", "slot_reservations", ["doctor_id"])
    if "ix_slot_reservations_appointment_id" not in idxs:
        op.create_index("ix_slot_reservations_appointment_id", "slot_reservations", ["appointment_id"])

    if "credit_ledger" not in existing_tables:
        op.create_table(
            "credit_ledger",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("account_id", sa.String(), sa.ForeignKey("accounts.id"), nullable=False),
            sa.Column("amount", sa.Integer(), nullable=False),
            sa.Column("kind", LEDGER_KIND, nullable=False),
            sa.Column("description", sa.String(), nullable=True),
            sa.Column("balance_before", sa.Integer(), nullable=False),
            sa.Column("balance_after", sa.Integer(), nullable=False),
            sa.Column("package_id", sa.Integer(), sa.ForeignKey("credit_packages.id"), nullable=True),
            sa.Column("appointment_id", sa.Integer(), sa.ForeignKey("appointments.id"), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        )
    idxs = existing_indexes("credit_ledger")
    if "ix_credit_ledger_id" not in idxs:
        op.create_index("ix_credit_ledger_id", "credit_ledger", ["id"])
    if "ix_credit_ledger_account_id" not in idxs:
        op.create_index("ix_credit_ledger_account_id", "credit_ledger", ["account_id"])
    if "ix_credit_ledger_kind" not in idxs:
        op.create_index("ix_credit_ledger_kind", "credit_ledger", ["kind"])
    if "ix_credit_ledger_package_id" not in idxs:
        op.create_index("ix_credit_ledger_package_id", "credit_ledger", ["package_id"])
    if "ix_credit_ledger_appointment_id" not in idxs:
        op.create_index("ix_credit_ledger_appointment_id", "credit_ledger", ["appointment_id"])
    if "ix_credit_ledger_created_at" not in idxs:
        op.create_index("ix_credit_ledger_created_at", "credit_ledger", ["created_at"])

    if "refunds" not in existing_tables:
        op.create_table(
            "refunds",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("appointment_id", sa.Integer(), sa.ForeignKey("appointments.id"), nullable=False),
            sa.Column("account_id", sa.String(), sa.ForeignKey("accounts.id"), nullable=False),
            sa.Column("reason", sa.String(), nullable=False),
            sa.Column("refund_type", sa.String(), nullable=False),
            sa.Column("original_credits", sa.Integer(), nullable=False),
            sa.Column("refunded_credits", sa.Integer(), nullable=False),
            sa.Column("refund_percentage", sa.Integer(), nullable=False),
            sa.Column("patient_refund_amount", sa.Float(), nullable=False),
            sa.Column("doctor_compensation", sa.Float(), nullable=False),
            sa.Column("platform_fee", sa.Float(), nullable=False),
            sa.Column("status", sa.String(), nullable=False),
            sa.Column("processed_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("refunds")
    if "ix_refunds_id" not in idxs:
        op.create_index("ix_refunds_id", "refunds", ["id"])
    if "ix_refunds_appointment_id" not in idxs:
        op.create_index("ix_refunds_appointment_id", "refunds", ["appointment_id"], unique=True)
    if "ix_refunds_account_id" not in idxs:
        op.create_index("ix_refunds_account_id", "refunds", ["account_id"])

    if "payment_confirmations" not in existing_tables:
        op.create_table(
            "payment_confirmations",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("reference_id", sa.String(), nullable=False),
            sa.Column("account_id", sa.String(), sa.ForeignKey("accounts.id"), nullable=False),
            sa.Column("plan_id", sa.String(), nullable=False),
            sa.Column("amount_paid", sa.Integer(), nullable=False),
            sa.Column("kind", sa.String(), nullable=False),
            sa.Column("package_id", sa.Integer(), sa.ForeignKey("credit_packages.id"), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        )
    idxs = existing_indexes("payment_confirmations")
    if "ix_payment_confirmations_id" not in idxs:
        op.create_index("ix_payment_confirmations_id", "payment_confirmations", ["id"])
    if "ix_payment_confirmations_reference_id" not in idxs:
        op.create_index("ix_payment_confirmations_reference_id", "payment_confirmations", ["reference_id"], unique=True)
    if "ix_payment_confirmations_account_id" not in idxs:
        op.create_index("ix_payment_confirmations_account_id", "payment_confirmations", ["account_id"])
    if "ix_payment_confirmations_plan_id" not in idxs:
        op.create_index("ix_payment_confirmations_plan_id", "payment_confirmations", ["plan_id"])
    if "ix_payment_confirmations_created_at" not in idxs:
        op.create_index("ix_payment_confirmations_created_at", "payment_confirmations", ["created_at"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("account_id", sa.String(), nullable=False),
            sa.Column("kind", sa.String(), nullable=False),
            sa.Column("title", sa.String(), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("related_id", sa.String(), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("notifications")
    if "ix_notifications_id" not in idxs:
        op.create_index("ix_notifications_id", "notifications", ["id"])
    if "ix_notifications_account_id" not in idxs:
        op.create_index("ix_notifications_account_id", "notifications", ["account_id"])
    if "ix_notifications_kind" not in idxs:
        op.create_index("ix_notifications_kind", "notifications", ["kind"])
    if "ix_notifications_related_id" not in idxs:
        op.create_index("ix_notifications_related_id", "notifications", ["related_id"])


def downgrade() -> None:
    for table in (
        "notifications",
        "payment_confirmations",
        "refunds",
        "credit_ledger",
        "slot_reservations",
        "appointments",
        "availability_slots",
        "credit_packages",
        "accounts",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for enum_type in (FUNDING_SOURCE, APPOINTMENT_STATUS, LEDGER_KIND, PACKAGE_STATUS, PACKAGE_TYPE, ROLE):
        enum_type.drop(bind, checkfirst=True)
