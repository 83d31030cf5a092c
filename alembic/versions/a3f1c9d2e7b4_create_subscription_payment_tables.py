"""create businesses, subscription plans, subscriptions and mpesa payments

Revision ID: a3f1c9d2e7b4
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "a3f1c9d2e7b4"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

plan_type = sa.Enum("monthly", "yearly", name="subscription_plan_type")


def upgrade() -> None:
    op.create_table(
        "Users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("role", sa.String(length=50), nullable=False, server_default="customer"),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_Users_username"), "Users", ["username"], unique=True)

    op.create_table(
        "businesses",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=True),
        sa.ForeignKeyConstraint(["owner_id"], ["Users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_businesses_owner_id"), "businesses", ["owner_id"], unique=False)

    op.create_table(
        "subscription_plans",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("type", plan_type, nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("features", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_subscription_plans_id"), "subscription_plans", ["id"], unique=False)

    op.create_table(
        "business_subscriptions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("business_id", sa.Integer(), nullable=False),
        sa.Column("plan_id", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.DateTime(), nullable=False),
        sa.Column("end_date", sa.DateTime(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("auto_renew", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.ForeignKeyConstraint(["business_id"], ["businesses.id"]),
        sa.ForeignKeyConstraint(["plan_id"], ["subscription_plans.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("business_id"),
    )
    op.create_index(op.f("ix_business_subscriptions_id"), "business_subscriptions", ["id"], unique=False)

    op.create_table(
        "mpesa_payments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("business_id", sa.Integer(), nullable=False),
        sa.Column("plan_id", sa.Integer(), nullable=False),
        sa.Column("subscription_id", sa.Integer(), nullable=True),
        sa.Column("phone_number", sa.String(length=20), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("checkout_request_id", sa.String(), nullable=False),
        sa.Column("merchant_request_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("result_code", sa.Integer(), nullable=True),
        sa.Column("result_desc", sa.Text(), nullable=True),
        sa.Column("mpesa_receipt_number", sa.String(), nullable=True),
        sa.Column("transaction_date", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.text("now()"), nullable=False),
        sa.ForeignKeyConstraint(["business_id"], ["businesses.id"]),
        sa.ForeignKeyConstraint(["plan_id"], ["subscription_plans.id"]),
        sa.ForeignKeyConstraint(["subscription_id"], ["business_subscriptions.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_mpesa_payments_id"), "mpesa_payments", ["id"], unique=False)
    op.create_index(op.f("ix_mpesa_payments_business_id"), "mpesa_payments", ["business_id"], unique=False)
    op.create_index(
        op.f("ix_mpesa_payments_checkout_request_id"), "mpesa_payments", ["checkout_request_id"], unique=True
    )
    op.create_index(
        "ix_mpesa_payments_business_created", "mpesa_payments", ["business_id", "created_at"], unique=False
    )
    op.create_index("ix_mpesa_payments_status_created", "mpesa_payments", ["status", "created_at"], unique=False)

    op.bulk_insert(
        sa.table(
            "subscription_plans",
            sa.column("name", sa.String()),
            sa.column("type", plan_type),
            sa.column("amount", sa.Integer()),
            sa.column("description", sa.Text()),
            sa.column("features", sa.Text()),
        ),
        [
            {
                "name": "Monthly Plan",
                "type": "monthly",
                "amount": 200,
                "description": "Basic monthly subscription for business listing",
                "features": "Business listing, Customer inquiries, Basic analytics",
            },
            {
                "name": "Annual Plan",
                "type": "yearly",
                "amount": 3000,
                "description": "Discounted annual subscription for business listing",
                "features": "Business listing, Customer inquiries, Advanced analytics, Featured placement",
            },
        ],
    )


def downgrade() -> None:
    op.drop_index("ix_mpesa_payments_status_created", table_name="mpesa_payments")
    op.drop_index("ix_mpesa_payments_business_created", table_name="mpesa_payments")
    op.drop_index(op.f("ix_mpesa_payments_checkout_request_id"), table_name="mpesa_payments")
    op.drop_index(op.f("ix_mpesa_payments_business_id"), table_name="mpesa_payments")
    op.drop_index(op.f("ix_mpesa_payments_id"), table_name="mpesa_payments")
    op.drop_table("mpesa_payments")
    op.drop_index(op.f("ix_business_subscriptions_id"), table_name="business_subscriptions")
    op.drop_table("business_subscriptions")
    op.drop_index(op.f("ix_subscription_plans_id"), table_name="subscription_plans")
    op.drop_table("subscription_plans")
    plan_type.drop(op.get_bind(), checkfirst=True)
    op.drop_index(op.f("ix_businesses_owner_id"), table_name="businesses")
    op.drop_table("businesses")
    op.drop_index(op.f("ix_Users_username"), table_name="Users")
    op.drop_table("Users")
