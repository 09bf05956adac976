"""Initial connector schema: mirror tables, CDC event log, OAuth token.

Revision ID: 001_initial_mirror
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_initial_mirror"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _text(*names: str) -> list[sa.Column]:
    return [sa.Column(name, sa.Text(), nullable=True) for name in names]


def _float(*names: str) -> list[sa.Column]:
    return [sa.Column(name, sa.Float(), nullable=True) for name in names]


def _bool(*names: str) -> list[sa.Column]:
    return [sa.Column(name, sa.Boolean(), nullable=True) for name in names]


def _date(*names: str) -> list[sa.Column]:
    return [sa.Column(name, sa.String(), nullable=True) for name in names]


def _create_mirror_table(table: str, mapped: list[sa.Column], indexed: list[str]) -> None:
    op.create_table(
        table,
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("sf_id", sa.String(32), nullable=False),
        *mapped,
        sa.Column("cdc_change_type", sa.String(20), nullable=True),
        sa.Column("cdc_replay_id", sa.String(64), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sf_created_date", sa.String(40), nullable=True),
        sa.Column("sf_last_modified_date", sa.String(40), nullable=True),
    )
    op.create_index(f"ix_{table}_sf_id", table, ["sf_id"], unique=True)
    for column in [*indexed, "is_deleted"]:
        op.create_index(f"ix_{table}_{column}", table, [column])


def _drop_mirror_table(table: str, indexed: list[str]) -> None:
    for column in ["sf_id", *indexed, "is_deleted"]:
        op.drop_index(f"ix_{table}_{column}", table_name=table)
    op.drop_table(table)


MIRROR_INDEXES: dict[str, list[str]] = {
    "sf_accounts": ["name", "owner_id"],
    "sf_contacts": ["account_id", "phone", "mobile_phone", "email", "owner_id"],
    "sf_leads": ["phone", "email", "status", "owner_id"],
    "sf_opportunities": ["account_id", "stage_name", "close_date", "owner_id"],
    "sf_tasks": ["who_id", "what_id", "status", "owner_id"],
    "sf_events": ["who_id", "what_id", "start_date_time", "owner_id"],
}


def upgrade() -> None:
    _create_mirror_table(
        "sf_accounts",
        [
            *_text(
                "name", "type", "parent_id",
                "billing_street", "billing_city", "billing_state",
                "billing_postal_code", "billing_country",
                "shipping_street", "shipping_city", "shipping_state",
                "shipping_postal_code", "shipping_country",
                "phone", "website", "industry",
            ),
            *_float("annual_revenue", "number_of_employees"),
            *_text("description", "owner_id"),
        ],
        MIRROR_INDEXES["sf_accounts"],
    )

    _create_mirror_table(
        "sf_contacts",
        _text(
            "account_id", "first_name", "last_name", "name", "salutation", "title",
            "mailing_street", "mailing_city", "mailing_state",
            "mailing_postal_code", "mailing_country",
            "other_street", "other_city", "other_state",
            "other_postal_code", "other_country",
            "phone", "mobile_phone", "home_phone", "email",
            "owner_id", "reports_to_id",
        ),
        MIRROR_INDEXES["sf_contacts"],
    )

    _create_mirror_table(
        "sf_leads",
        [
            *_text(
                "first_name", "last_name", "name", "salutation", "title", "company",
                "street", "city", "state", "postal_code", "country",
                "phone", "email", "website", "status",
                "lead_source", "industry", "rating",
            ),
            *_float("annual_revenue", "number_of_employees"),
            *_text("description"),
            *_bool("is_converted"),
            *_text("converted_account_id", "converted_contact_id", "converted_opportunity_id"),
            *_date("converted_date"),
            *_text("owner_id"),
        ],
        MIRROR_INDEXES["sf_leads"],
    )

    _create_mirror_table(
        "sf_opportunities",
        [
            *_text("account_id", "name", "description", "stage_name"),
            *_float("amount", "probability"),
            *_date("close_date"),
            *_text("type", "lead_source", "next_step", "forecast_category_name"),
            *_bool("is_closed", "is_won"),
            *_text("owner_id"),
        ],
        MIRROR_INDEXES["sf_opportunities"],
    )

    _create_mirror_table(
        "sf_tasks",
        [
            *_text("who_id", "what_id", "subject", "description", "status", "priority"),
            *_date("activity_date"),
            *_text("call_type"),
            *_float("call_duration_in_seconds"),
            *_text("call_disposition"),
            *_bool("is_completed"),
            *_date("completed_date_time"),
            *_text("owner_id"),
        ],
        MIRROR_INDEXES["sf_tasks"],
    )

    _create_mirror_table(
        "sf_events",
        [
            *_text("who_id", "what_id", "subject", "description", "location"),
            *_date("start_date_time", "end_date_time"),
            *_bool("is_all_day_event"),
            *_float("duration_in_minutes"),
            *_text("owner_id"),
        ],
        MIRROR_INDEXES["sf_events"],
    )

    op.create_table(
        "cdc_event_log",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("object_type", sa.Text(), nullable=True),
        sa.Column("change_type", sa.Text(), nullable=True),
        sa.Column("record_id", sa.Text(), nullable=True),
        sa.Column("replay_id", sa.Text(), nullable=True),
        sa.Column("work_id", sa.Text(), nullable=True),
        sa.Column("event_index", sa.Integer(), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("work_id", "event_index", name="uq_cdc_event_log_work_event"),
    )
    op.create_index("ix_cdc_event_log_object_type", "cdc_event_log", ["object_type"])
    op.create_index("ix_cdc_event_log_record_id", "cdc_event_log", ["record_id"])
    op.create_index("ix_cdc_event_log_processed_at", "cdc_event_log", ["processed_at"])

    op.create_table(
        "sf_auth_tokens",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text(), nullable=True),
        sa.Column("instance_url", sa.String(255), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("sf_auth_tokens")
    op.drop_index("ix_cdc_event_log_processed_at", table_name="cdc_event_log")
    op.drop_index("ix_cdc_event_log_record_id", table_name="cdc_event_log")
    op.drop_index("ix_cdc_event_log_object_type", table_name="cdc_event_log")
    op.drop_table("cdc_event_log")

    for table in reversed(list(MIRROR_INDEXES)):
        _drop_mirror_table(table, MIRROR_INDEXES[table])
