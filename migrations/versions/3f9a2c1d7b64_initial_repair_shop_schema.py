from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "3f9a2c1d7b64"
down_revision = None
branch_labels = None
depends_on = None

# Enum columns store member names.
USER_ROLE = sa.Enum(
    "USER", "REPAIRMAN", "CUSTOMER_SERVICE", "ADMIN", name="userrole")
ORDER_STATUS = sa.Enum(
    "PENDING", "CONFIRMED", "IN_PROGRESS", "COMPLETED", "CANCELLED",
    name="orderstatus")
SERVICE_TYPE = sa.Enum("REPAIR", "APPOINTMENT", name="servicetype")
APPOINTMENT_SERVICE = sa.Enum(
    "CLEANING", "SCREEN_REPLACEMENT", "BATTERY_REPLACEMENT",
    "SYSTEM_REINSTALL", "SOFTWARE_INSTALL", name="appointmentservice")
LIQUID_METAL = sa.Enum("YES", "NO", "UNCERTAIN", name="liquidmetal")
URGENCY = sa.Enum("LOW", "MEDIUM", "HIGH", name="urgency")
PAYMENT_STATUS = sa.Enum(
    "UNPAID", "PENDING", "PAID", "FAILED", "REFUNDED", name="paymentstatus")
PAYMENT_METHOD = sa.Enum(
    "WECHAT", "ALIPAY", "BANK_CARD", "CASH", name="paymentmethod")


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("phone", sa.String(length=20), nullable=False),
        sa.Column("username", sa.String(length=32), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("email", sa.String(length=120), nullable=False),
        sa.Column("role", USER_ROLE, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("last_login_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.create_index("ix_users_phone", ["phone"], unique=True)
        batch_op.create_index("ix_users_username", ["username"], unique=True)

    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("device_type", sa.String(length=50), nullable=False),
        sa.Column("device_model", sa.String(length=100), nullable=False),
        sa.Column("service_type", SERVICE_TYPE, nullable=False),
        sa.Column("appointment_service", APPOINTMENT_SERVICE, nullable=True),
        sa.Column("liquid_metal", LIQUID_METAL, nullable=True),
        sa.Column("problem_description", sa.Text(), nullable=True),
        sa.Column("urgency", URGENCY, nullable=False),
        sa.Column("contact_name", sa.String(length=50), nullable=False),
        sa.Column("contact_phone", sa.String(length=20), nullable=False),
        sa.Column("appointment_time", sa.DateTime(), nullable=False),
        sa.Column("status", ORDER_STATUS, nullable=False),
        sa.Column("assigned_to", sa.Integer(), nullable=True),
        sa.Column("repair_notes", sa.Text(), nullable=True),
        sa.Column("rating_score", sa.Integer(), nullable=True),
        sa.Column("rating_comment", sa.Text(), nullable=True),
        sa.Column("rated_at", sa.DateTime(), nullable=True),
        sa.Column("amount", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("payment_status", PAYMENT_STATUS, nullable=False),
        sa.Column("payment_method", PAYMENT_METHOD, nullable=True),
        sa.Column("payment_order_id", sa.String(length=40), nullable=True),
        sa.Column("transaction_id", sa.String(length=100), nullable=True),
        sa.Column("paid_at", sa.DateTime(), nullable=True),
        sa.Column(
            "refund_amount", sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column("refund_reason", sa.String(length=500), nullable=True),
        sa.Column("refund_time", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.CheckConstraint(
            "rating_score IS NULL OR "
            "(rating_score >= 1 AND rating_score <= 5)",
            name="check_rating_range"),
        sa.CheckConstraint("amount >= 0", name="check_amount_non_negative"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(
            ["assigned_to"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.create_index("ix_orders_user_id", ["user_id"])
        batch_op.create_index("ix_orders_assigned_to", ["assigned_to"])
        batch_op.create_index("ix_orders_status", ["status"])
        batch_op.create_index("ix_orders_payment_status", ["payment_status"])
        batch_op.create_index(
            "ix_orders_payment_order_id", ["payment_order_id"], unique=True)
        batch_op.create_index("ix_orders_created_at", ["created_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("actor_role", sa.String(length=20), nullable=False),
        sa.Column("action", sa.String(length=100), nullable=False),
        sa.Column("target_type", sa.String(length=50), nullable=True),
        sa.Column("target_id", sa.Integer(), nullable=True),
        sa.Column("ip", sa.String(length=45), nullable=True),
        sa.Column("user_agent", sa.String(length=500), nullable=True),
        sa.Column("payload_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["actor_id"], ["users.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("audit_logs", schema=None) as batch_op:
        batch_op.create_index("ix_audit_logs_created_at", ["created_at"])


def downgrade():
    with op.batch_alter_table("audit_logs", schema=None) as batch_op:
        batch_op.drop_index("ix_audit_logs_created_at")
    op.drop_table("audit_logs")

    with op.batch_alter_table("orders", schema=None) as batch_op:
        batch_op.drop_index("ix_orders_created_at")
        batch_op.drop_index("ix_orders_payment_order_id")
        batch_op.drop_index("ix_orders_payment_status")
        batch_op.drop_index("ix_orders_status")
        batch_op.drop_index("ix_orders_assigned_to")
        batch_op.drop_index("ix_orders_user_id")
    op.drop_table("orders")

    with op.batch_alter_table("users", schema=None) as batch_op:
        batch_op.drop_index("ix_users_username")
        batch_op.drop_index("ix_users_phone")
    op.drop_table("users")
