from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "8b2e4f6a1c93"
down_revision = "3f9a2c1d7b64"
branch_labels = None
depends_on = None

# Enum columns store member names.
SERVICE_CATEGORY = sa.Enum(
    "REPAIR", "MAINTENANCE", "INSTALLATION", "CONSULTATION",
    name="servicecategory")
PRICING_TYPE = sa.Enum(
    "FIXED", "HOURLY", "TIERED", "DYNAMIC", name="pricingtype")
CONFIG_VALUE_TYPE = sa.Enum(
    "STRING", "NUMBER", "BOOLEAN", "OBJECT", "ARRAY", name="configvaluetype")
CONFIG_CATEGORY = sa.Enum(
    "NOTIFICATION", "BUSINESS", "SYSTEM", "UI", "PAYMENT",
    name="configcategory")


def upgrade():
    op.create_table(
        "service_items",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column(
            "base_price", sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column("estimated_duration", sa.Integer(), nullable=False),
        sa.Column("category", SERVICE_CATEGORY, nullable=False),
        sa.Column("required_skills_json", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("base_price >= 0", name="check_base_price"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    with op.batch_alter_table("service_items", schema=None) as batch_op:
        batch_op.create_index("ix_service_items_code", ["code"], unique=True)

    op.create_table(
        "device_types",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("category", sa.String(length=50), nullable=False),
        sa.Column("brands", sa.String(length=500), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("common_issues", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )
    with op.batch_alter_table("device_types", schema=None) as batch_op:
        batch_op.create_index("ix_device_types_code", ["code"], unique=True)

    op.create_table(
        "pricing_strategies",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("pricing_type", PRICING_TYPE, nullable=False),
        sa.Column("rules_json", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("valid_from", sa.DateTime(), nullable=False),
        sa.Column("valid_to", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("name"),
    )

    op.create_table(
        "pricing_strategy_service_items",
        sa.Column("strategy_id", sa.Integer(), nullable=False),
        sa.Column("service_item_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(
            ["strategy_id"], ["pricing_strategies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["service_item_id"], ["service_items.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("strategy_id", "service_item_id"),
    )
    op.create_table(
        "pricing_strategy_device_types",
        sa.Column("strategy_id", sa.Integer(), nullable=False),
        sa.Column("device_type_id", sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(
            ["strategy_id"], ["pricing_strategies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["device_type_id"], ["device_types.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("strategy_id", "device_type_id"),
    )

    op.create_table(
        "system_configs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("key", sa.String(length=100), nullable=False),
        sa.Column("value_json", sa.Text(), nullable=False),
        sa.Column("value_type", CONFIG_VALUE_TYPE, nullable=False),
        sa.Column("category", CONFIG_CATEGORY, nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("is_editable", sa.Boolean(), nullable=False),
        sa.Column("validation_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    with op.batch_alter_table("system_configs", schema=None) as batch_op:
        batch_op.create_index("ix_system_configs_key", ["key"], unique=True)


def downgrade():
    with op.batch_alter_table("system_configs", schema=None) as batch_op:
        batch_op.drop_index("ix_system_configs_key")
    op.drop_table("system_configs")

    op.drop_table("pricing_strategy_device_types")
    op.drop_table("pricing_strategy_service_items")
    op.drop_table("pricing_strategies")

    with op.batch_alter_table("device_types", schema=None) as batch_op:
        batch_op.drop_index("ix_device_types_code")
    op.drop_table("device_types")

    with op.batch_alter_table("service_items", schema=None) as batch_op:
        batch_op.drop_index("ix_service_items_code")
    op.drop_table("service_items")
