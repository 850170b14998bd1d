"""init billing schema

Revision ID: 0001_init
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None

MONEY = sa.Numeric(14, 2)
QTY = sa.Numeric(14, 4)
RATE = sa.Numeric(7, 4)


def _ix(table: str, *cols: str) -> None:
    for c in cols:
        op.create_index(f"ix_{table}_{c}", table, [c])


def upgrade():
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("slug", sa.String(length=80), nullable=False),
        sa.Column("name", sa.String(length=160), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_organizations_slug", "organizations", ["slug"], unique=True)

    op.create_table(
        "units",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("code", sa.String(length=40), nullable=False),
        sa.Column("name", sa.String(length=160), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("org_id", "code", name="uq_units_org_code"),
    )
    _ix("units", "org_id")

    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("full_name", sa.String(length=160), nullable=False),
        sa.Column("email", sa.String(length=200), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    _ix("tenants", "org_id")

    op.create_table(
        "charge_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("code", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("is_taxable", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("tax_rate", RATE, nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.UniqueConstraint("org_id", "code", name="uq_charge_types_org_code"),
    )
    _ix("charge_types", "org_id")

    # ---- leases ----
    op.create_table(
        "leases",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("unit_id", sa.Integer(), sa.ForeignKey("units.id"), nullable=False),
        sa.Column("lease_number", sa.String(length=40), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("rent_due_day", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("grace_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("late_fee_type", sa.String(length=20), nullable=False, server_default="none"),
        sa.Column("late_fee_value", MONEY, nullable=True),
        sa.Column("auto_renew", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("activated_at", sa.DateTime(), nullable=True),
        sa.Column("notice_given_at", sa.DateTime(), nullable=True),
        sa.Column("ended_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("org_id", "lease_number", name="uq_leases_org_number"),
    )
    _ix("leases", "org_id", "unit_id", "status")

    op.create_table(
        "lease_terms",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("lease_id", sa.Integer(), sa.ForeignKey("leases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("effective_from", sa.Date(), nullable=False),
        sa.Column("effective_to", sa.Date(), nullable=True),
        sa.Column("monthly_rent", MONEY, nullable=False),
        sa.Column("security_deposit", MONEY, nullable=False, server_default="0"),
        sa.Column("maintenance_charge", MONEY, nullable=True),
        sa.Column("other_fixed_charge", MONEY, nullable=True),
        sa.Column("escalation_type", sa.String(length=20), nullable=False, server_default="none"),
        sa.Column("escalation_value", QTY, nullable=True),
        sa.Column("escalation_every_months", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("lease_id", "effective_from", name="uq_lease_terms_lease_from"),
    )
    _ix("lease_terms", "lease_id")

    op.create_table(
        "lease_billing_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("lease_id", sa.Integer(), sa.ForeignKey("leases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("billing_day", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("payment_term_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("generate_invoice_automatically", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("proration_method", sa.String(length=30), nullable=False, server_default="actual_days_in_month"),
        sa.Column("invoice_prefix", sa.String(length=20), nullable=True),
        sa.Column("payment_instructions", sa.Text(), nullable=True),
        sa.CheckConstraint("billing_day BETWEEN 1 AND 28", name="ck_lease_billing_settings_billing_day"),
        sa.CheckConstraint("payment_term_days >= 0", name="ck_lease_billing_settings_payment_term_days"),
        sa.CheckConstraint(
            "proration_method IN ('actual_days_in_month', 'thirty_day_month')",
            name="ck_lease_billing_settings_proration_method",
        ),
    )
    op.create_index("ix_lease_billing_settings_lease_id", "lease_billing_settings", ["lease_id"], unique=True)

    op.create_table(
        "lease_parties",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("lease_id", sa.Integer(), sa.ForeignKey("leases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("tenant_id", sa.Integer(), sa.ForeignKey("tenants.id"), nullable=False),
        sa.Column("role", sa.String(length=20), nullable=False),
        sa.Column("is_responsible_for_payment", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.UniqueConstraint("lease_id", "tenant_id", name="uq_lease_parties_lease_tenant"),
    )
    _ix("lease_parties", "lease_id", "tenant_id")

    op.create_table(
        "lease_recurring_charges",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("lease_id", sa.Integer(), sa.ForeignKey("leases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("charge_code", sa.String(length=20), nullable=False),
        sa.Column("description", sa.String(length=300), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("frequency", sa.String(length=20), nullable=False, server_default="monthly"),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_lease_recurring_charges_amount"),
    )
    _ix("lease_recurring_charges", "org_id", "lease_id")

    # ---- utilities ----
    op.create_table(
        "utility_rate_plans",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("utility_type", sa.String(length=20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    _ix("utility_rate_plans", "org_id")

    op.create_table(
        "utility_rate_slabs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("plan_id", sa.Integer(), sa.ForeignKey("utility_rate_plans.id", ondelete="CASCADE"), nullable=False),
        sa.Column("slab_order", sa.Integer(), nullable=False),
        sa.Column("from_units", QTY, nullable=False),
        sa.Column("to_units", QTY, nullable=True),
        sa.Column("rate_per_unit", QTY, nullable=False),
        sa.Column("fixed_charge", MONEY, nullable=True),
        sa.UniqueConstraint("plan_id", "slab_order", name="uq_utility_rate_slabs_plan_order"),
    )
    _ix("utility_rate_slabs", "plan_id")

    op.create_table(
        "utility_statements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("lease_id", sa.Integer(), sa.ForeignKey("leases.id", ondelete="CASCADE"), nullable=False),
        sa.Column("utility_type", sa.String(length=20), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("is_meter_based", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("rate_plan_id", sa.Integer(), sa.ForeignKey("utility_rate_plans.id"), nullable=True),
        sa.Column("previous_reading", QTY, nullable=True),
        sa.Column("current_reading", QTY, nullable=True),
        sa.Column("units_consumed", QTY, nullable=True),
        sa.Column("direct_amount", MONEY, nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_final", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "lease_id", "utility_type", "period_start", "period_end", "version",
            name="uq_utility_statements_version",
        ),
    )
    _ix("utility_statements", "org_id", "lease_id")
    op.create_index(
        "uq_utility_statements_final",
        "utility_statements",
        ["lease_id", "utility_type", "period_start", "period_end"],
        unique=True,
        sqlite_where=sa.text("is_final = 1"),
        postgresql_where=sa.text("is_final"),
    )

    # ---- invoice runs + invoices ----
    op.create_table(
        "invoice_runs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("run_number", sa.String(length=40), nullable=False, unique=True),
        sa.Column("billing_period_start", sa.Date(), nullable=False),
        sa.Column("billing_period_end", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("total_leases", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("success_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("failure_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    _ix("invoice_runs", "org_id", "status")

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("lease_id", sa.Integer(), sa.ForeignKey("leases.id"), nullable=False),
        sa.Column("invoice_run_id", sa.Integer(), sa.ForeignKey("invoice_runs.id"), nullable=True),
        sa.Column("invoice_number", sa.String(length=40), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("billing_period_start", sa.Date(), nullable=False),
        sa.Column("billing_period_end", sa.Date(), nullable=False),
        sa.Column("invoice_date", sa.Date(), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("sub_total", MONEY, nullable=False, server_default="0"),
        sa.Column("tax_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("total_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("paid_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("balance_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("payment_instructions", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("issued_at", sa.DateTime(), nullable=True),
        sa.Column("voided_at", sa.DateTime(), nullable=True),
        sa.Column("void_reason", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("org_id", "invoice_number", name="uq_invoices_org_number"),
    )
    _ix("invoices", "org_id", "lease_id", "invoice_run_id", "status")
    # one live invoice per lease and exact period
    op.create_index(
        "uq_invoices_lease_period_live",
        "invoices",
        ["lease_id", "billing_period_start", "billing_period_end"],
        unique=True,
        sqlite_where=sa.text("status != 'void'"),
        postgresql_where=sa.text("status != 'void'"),
    )

    op.create_table(
        "invoice_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("charge_code", sa.String(length=20), nullable=False),
        sa.Column("description", sa.String(length=300), nullable=False),
        sa.Column("quantity", QTY, nullable=False, server_default="1"),
        sa.Column("unit_price", MONEY, nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("tax_rate", RATE, nullable=False, server_default="0"),
        sa.Column("tax_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("total_amount", MONEY, nullable=False),
        sa.Column("source", sa.String(length=20), nullable=False),
        sa.Column("source_ref_id", sa.Integer(), nullable=True),
        sa.Column("period_start", sa.Date(), nullable=True),
        sa.Column("period_end", sa.Date(), nullable=True),
        sa.Column("is_prorated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.UniqueConstraint("invoice_id", "line_number", name="uq_invoice_lines_number"),
    )
    _ix("invoice_lines", "invoice_id", "source_ref_id")

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id"), nullable=False),
        sa.Column("lease_id", sa.Integer(), sa.ForeignKey("leases.id"), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("payment_mode", sa.String(length=20), nullable=False, server_default="cash"),
        sa.Column("transaction_reference", sa.String(length=120), nullable=True),
        sa.Column("payment_date", sa.Date(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("received_by", sa.String(length=120), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_payments_amount"),
    )
    _ix("payments", "org_id", "invoice_id", "lease_id")

    op.create_table(
        "invoice_run_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("run_id", sa.Integer(), sa.ForeignKey("invoice_runs.id", ondelete="CASCADE"), nullable=False),
        sa.Column("lease_id", sa.Integer(), sa.ForeignKey("leases.id"), nullable=False),
        sa.Column("is_success", sa.Boolean(), nullable=False),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id"), nullable=True),
        sa.Column("error_code", sa.String(length=60), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("run_id", "lease_id", name="uq_invoice_run_items_run_lease"),
    )
    _ix("invoice_run_items", "run_id", "lease_id")

    # ---- credit notes ----
    op.create_table(
        "credit_notes",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("invoice_id", sa.Integer(), sa.ForeignKey("invoices.id"), nullable=False),
        sa.Column("credit_note_number", sa.String(length=40), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="draft"),
        sa.Column("reason", sa.String(length=40), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("credit_note_date", sa.Date(), nullable=False),
        sa.Column("sub_total", MONEY, nullable=False, server_default="0"),
        sa.Column("tax_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("total_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("issued_at", sa.DateTime(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("org_id", "credit_note_number", name="uq_credit_notes_org_number"),
    )
    _ix("credit_notes", "org_id", "invoice_id")

    op.create_table(
        "credit_note_lines",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("credit_note_id", sa.Integer(), sa.ForeignKey("credit_notes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("invoice_line_id", sa.Integer(), sa.ForeignKey("invoice_lines.id"), nullable=False),
        sa.Column("line_number", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=300), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("tax_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("total_amount", MONEY, nullable=False),
    )
    _ix("credit_note_lines", "credit_note_id", "invoice_line_id")

    # ---- numbering + audit ----
    op.create_table(
        "number_sequences",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("kind", sa.String(length=40), nullable=False),
        sa.Column("period_key", sa.String(length=6), nullable=False),
        sa.Column("last_value", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("org_id", "kind", "period_key", name="uq_number_sequences_key"),
    )
    _ix("number_sequences", "org_id")

    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("actor", sa.String(length=120), nullable=True),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("entity_type", sa.String(length=80), nullable=False),
        sa.Column("entity_id", sa.String(length=80), nullable=False),
        sa.Column("before_json", sa.Text(), nullable=True),
        sa.Column("after_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    _ix("audit_events", "org_id")


def downgrade():
    for t in (
        "audit_events",
        "number_sequences",
        "credit_note_lines",
        "credit_notes",
        "invoice_run_items",
        "payments",
        "invoice_lines",
        "invoices",
        "invoice_runs",
        "utility_statements",
        "utility_rate_slabs",
        "utility_rate_plans",
        "lease_recurring_charges",
        "lease_parties",
        "lease_billing_settings",
        "lease_terms",
        "leases",
        "charge_types",
        "tenants",
        "units",
        "organizations",
    ):
        op.drop_table(t)
