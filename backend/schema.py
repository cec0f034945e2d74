from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    false,
    func,
)

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("auth_id", String(255), unique=True, nullable=False),
    Column("email", String(255), nullable=False),
    Column("name", String(255)),
    Column("currency", String(3), nullable=False, server_default="USD"),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

budget_categories = Table(
    "budget_categories",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("type", String(20), nullable=False),
    Column("name", String(255), nullable=False),
    Column("emoji", String(32)),
    Column("color", String(20)),
    Column("sort_order", Float, nullable=False, server_default="0"),
    Column("is_archived", Boolean, nullable=False, server_default=false()),
    Column("archived_at", DateTime),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Index("ix_budget_categories_user_type_order", "user_id", "type", "sort_order"),
)

budget_items = Table(
    "budget_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column(
        "budget_category_id",
        Integer,
        ForeignKey("budget_categories.id"),
        nullable=False,
    ),
    Column("type", String(20), nullable=False),
    Column("name", String(255), nullable=False),
    Column("amount", BigInteger, nullable=False, server_default="0"),
    Column("frequency", String(20), nullable=False, server_default="monthly"),
    Column("start_date", Date),
    Column("day_of_week", String(10)),
    Column("day_of_month", Integer),
    Column("day_of_month_is_last", Boolean, nullable=False, server_default=false()),
    Column("second_day_of_month", Integer),
    Column("second_day_of_month_is_last", Boolean, nullable=False, server_default=false()),
    Column("sort_order", Float, nullable=False, server_default="0"),
    Column("is_archived", Boolean, nullable=False, server_default=false()),
    Column("archived_at", DateTime),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Index("ix_budget_items_user_category_order", "user_id", "budget_category_id", "sort_order"),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column(
        "budget_category_id",
        Integer,
        ForeignKey("budget_categories.id"),
        nullable=False,
    ),
    Column("type", String(20), nullable=False),
    Column("label", String(255)),
    Column("amount", BigInteger, nullable=False),
    Column("date", Date, nullable=False),
    Column("memo", String(500)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    Index("ix_transactions_user_category_date", "user_id", "budget_category_id", "date"),
)
