"""initial budgeting schema

Revision ID: 5b1f0c2a9d47
Revises:
Create Date: 2026-10-19 09:12:44.301127

Rate catalog tables, budgets with their draft history, freight calculations
and the audit log. Tables that already exist (created by
Base.metadata.create_all()) are left alone.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '5b1f0c2a9d47'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(table_name):
    """Check if a table exists."""
    bind = op.get_bind()
    insp = inspect(bind)
    return table_name in insp.get_table_names()


def _banded_columns():
    return [
        sa.Column("km_from", sa.Float(), nullable=False),
        sa.Column("km_to", sa.Float(), nullable=False),
    ]


def upgrade() -> None:
    if not _table_exists("freight_rates"):
        op.create_table(
            "freight_rates",
            sa.Column("id", sa.Integer(), primary_key=True, index=True),
            sa.Column("origin_plant", sa.String(), nullable=True),
            *_banded_columns(),
            sa.Column("rate_under", sa.Float(), nullable=False),
            sa.Column("rate_over", sa.Float(), nullable=False),
            sa.Column("effective_date", sa.Date(), nullable=False, index=True),
            sa.Column("created_by", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )

    if not _table_exists("assembly_rates"):
        op.create_table(
            "assembly_rates",
            sa.Column("id", sa.Integer(), primary_key=True, index=True),
            *_banded_columns(),
            sa.Column("rate_under_100t", sa.Float(), nullable=False),
            sa.Column("rate_100_300t", sa.Float(), nullable=False),
            sa.Column("rate_over_300t", sa.Float(), nullable=False),
            sa.Column("effective_date", sa.Date(), nullable=False, index=True),
            sa.Column("created_by", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )

    if not _table_exists("material_prices"):
        op.create_table(
            "material_prices",
            sa.Column("id", sa.Integer(), primary_key=True, index=True),
            sa.Column("material_code", sa.String(), nullable=False, index=True),
            sa.Column("price", sa.Float(), nullable=False),
            sa.Column("unit", sa.String(), nullable=True),
            sa.Column("effective_date", sa.Date(), nullable=False, index=True),
            sa.Column("change_reason", sa.String(), nullable=True),
            sa.Column("created_by", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )

    if not _table_exists("monthly_indices"):
        op.create_table(
            "monthly_indices",
            sa.Column("id", sa.Integer(), primary_key=True, index=True),
            sa.Column("month", sa.Integer(), nullable=False),
            sa.Column("year", sa.Integer(), nullable=False),
            sa.Column("steel_index", sa.Float(), nullable=False),
            sa.Column("labor_index", sa.Float(), nullable=False),
            sa.Column("concrete_index", sa.Float(), nullable=False),
            sa.Column("fuel_index", sa.Float(), nullable=False),
            sa.Column("dollar_rate", sa.Float(), nullable=True),
            sa.Column("source", sa.String(), nullable=True),
            sa.Column("effective_date", sa.Date(), nullable=False, index=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.UniqueConstraint("month", "year", name="uq_monthly_index_period"),
        )

    if not _table_exists("polynomial_formulas"):
        op.create_table(
            "polynomial_formulas",
            sa.Column("id", sa.Integer(), primary_key=True, index=True),
            sa.Column("name", sa.String(), nullable=True),
            sa.Column("steel_coefficient", sa.Float(), nullable=True),
            sa.Column("labor_coefficient", sa.Float(), nullable=True),
            sa.Column("concrete_coefficient", sa.Float(), nullable=True),
            sa.Column("fuel_coefficient", sa.Float(), nullable=True),
            sa.Column("effective_date", sa.Date(), nullable=False, index=True),
            sa.Column("created_by", sa.String(), nullable=True),
            sa.Column("bootstrap_key", sa.String(), nullable=True, unique=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )

    if not _table_exists("piece_prices"):
        op.create_table(
            "piece_prices",
            sa.Column("id", sa.Integer(), primary_key=True, index=True),
            sa.Column("piece_id", sa.String(), nullable=False, index=True),
            sa.Column("zone", sa.String(), nullable=True),
            sa.Column("unit_cost", sa.Float(), nullable=False),
            sa.Column("effective_date", sa.Date(), nullable=False, index=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )

    if not _table_exists("budgets"):
        op.create_table(
            "budgets",
            sa.Column("id", sa.Integer(), primary_key=True, index=True),
            sa.Column("customer_id", sa.String(), nullable=True),
            sa.Column("project_id", sa.String(), nullable=True),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=True),
            sa.Column("is_draft", sa.Boolean(), nullable=False),
            sa.Column("draft_step", sa.Integer(), nullable=True),
            sa.Column("completed_steps", sa.JSON(), nullable=True),
            sa.Column("draft_data", sa.JSON(), nullable=True),
            sa.Column("resume_token", sa.String(), nullable=True, unique=True, index=True),
            sa.Column("last_edited_at", sa.DateTime(), nullable=True),
            sa.Column("origin_plant", sa.String(), nullable=True),
            sa.Column("destination", sa.String(), nullable=True),
            sa.Column("distance_km", sa.Float(), nullable=True),
            sa.Column("truck_loads", sa.Integer(), nullable=True),
            sa.Column("long_haul", sa.Boolean(), nullable=True),
            sa.Column("assembly_days", sa.Float(), nullable=True),
            sa.Column("crane_days", sa.Float(), nullable=True),
            sa.Column("needs_repricing", sa.Boolean(), nullable=True),
            sa.Column("total_materials", sa.Float(), nullable=True),
            sa.Column("total_assembly", sa.Float(), nullable=True),
            sa.Column("total_freight", sa.Float(), nullable=True),
            sa.Column("final_total", sa.Float(), nullable=True),
            sa.Column("priced_json", sa.JSON(), nullable=True),
            sa.Column("priced_at", sa.DateTime(), nullable=True),
            sa.Column("finalized_at", sa.DateTime(), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(), nullable=True),
            sa.Column("updated_at", sa.DateTime(), nullable=True),
        )

    if not _table_exists("budget_items"):
        op.create_table(
            "budget_items",
            sa.Column("id", sa.Integer(), primary_key=True, index=True),
            sa.Column("budget_id", sa.Integer(),
                      sa.ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False),
            sa.Column("piece_id", sa.String(), nullable=False),
            sa.Column("description", sa.String(), nullable=True),
            sa.Column("zone", sa.String(), nullable=True),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("unit_weight_tons", sa.Float(), nullable=True),
            sa.Column("length_m", sa.Float(), nullable=True),
            sa.Column("unit_cost", sa.Float(), nullable=True),
            sa.Column("escalated_unit_cost", sa.Float(), nullable=True),
            sa.Column("line_total", sa.Float(), nullable=True),
        )

    if not _table_exists("budget_draft_history"):
        op.create_table(
            "budget_draft_history",
            sa.Column("id", sa.Integer(), primary_key=True, index=True),
            sa.Column("budget_id", sa.Integer(),
                      sa.ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False),
            sa.Column("step", sa.Integer(), nullable=False),
            sa.Column("data", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )

    if not _table_exists("freight_calculations"):
        op.create_table(
            "freight_calculations",
            sa.Column("id", sa.Integer(), primary_key=True, index=True),
            sa.Column("budget_id", sa.Integer(),
                      sa.ForeignKey("budgets.id", ondelete="SET NULL"), nullable=True),
            sa.Column("origin_plant", sa.String(), nullable=True),
            sa.Column("destination", sa.String(), nullable=True),
            sa.Column("distance_km", sa.Float(), nullable=False),
            sa.Column("truck_loads", sa.Integer(), nullable=False),
            sa.Column("long_haul", sa.Boolean(), nullable=True),
            sa.Column("freight_rate_id", sa.Integer(),
                      sa.ForeignKey("freight_rates.id"), nullable=True),
            sa.Column("unit_rate", sa.Float(), nullable=False),
            sa.Column("total_cost", sa.Float(), nullable=False),
            sa.Column("request_key", sa.String(), nullable=True, unique=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )

    if not _table_exists("audit_logs"):
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), primary_key=True, index=True),
            sa.Column("action", sa.String(), nullable=False),
            sa.Column("resource", sa.String(), nullable=False),
            sa.Column("resource_id", sa.String(), nullable=True),
            sa.Column("detail", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=True),
        )


def downgrade() -> None:
    for table in (
        "audit_logs", "freight_calculations", "budget_draft_history", "budget_items",
        "budgets", "piece_prices", "polynomial_formulas", "monthly_indices",
        "material_prices", "assembly_rates", "freight_rates",
    ):
        if _table_exists(table):
            op.drop_table(table)
