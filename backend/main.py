import logging
import os
from dataclasses import replace
from datetime import date, datetime
from decimal import Decimal

from fastapi import FastAPI, HTTPException, Header, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import create_engine, insert, select, update
from sqlalchemy.exc import IntegrityError

from backend.budget_engine import (
    MAX_AMOUNT,
    BudgetCategory,
    BudgetItem,
    BudgetTransaction,
    summarize_budget,
)
from backend.budget_store import (
    ActionResult,
    CategoryUpdate,
    ExistingCategory,
    ItemUpdate,
    NewBudgetItem,
    NewCategory,
    NewTransaction,
    add_transaction,
    archive_category,
    archive_item,
    create_category,
    create_item,
    list_categories,
    list_category_transactions,
    list_items,
    list_transactions,
    reorder_category,
    reorder_item,
    run_action,
    unarchive_category,
    unarchive_item,
    update_category,
    update_item,
)
from backend.currency_format import format_amount, normalize_currency, to_minor_units
from backend.recurrence import (
    RecurrenceDescriptor,
    describe_recurrence,
    monthly_equivalent,
    validate_recurrence,
)
from backend.schema import metadata, users

app = FastAPI()

frontend_origin = os.getenv("FRONTEND_ORIGIN", "http://localhost:3000")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

database_url = os.getenv("DATABASE_URL", "sqlite:///./budget.db")
connect_args = {}
if database_url.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(database_url, connect_args=connect_args)

logging.getLogger("backend").setLevel(os.getenv("LOG_LEVEL", "INFO").upper())


def get_system_default_currency() -> str:
    raw = os.getenv("DEFAULT_CURRENCY", "USD")
    try:
        return normalize_currency(raw)
    except ValueError:
        return "USD"


SYSTEM_DEFAULT_CURRENCY = get_system_default_currency()

ACTION_ERROR_STATUS = {
    "not_found": 404,
    "transaction": 500,
}


@app.on_event("startup")
def init_db() -> None:
    metadata.create_all(engine)


class BudgetType:
    values = {"income", "expense", "savings"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Budget type must be income, expense, or savings.")
        return normalized


class UserSyncPayload(BaseModel):
    email: str
    name: str | None = None

    @classmethod
    def validate_payload(cls, payload: "UserSyncPayload") -> "UserSyncPayload":
        payload.email = payload.email.strip().lower()
        if not payload.email or "@" not in payload.email:
            raise ValueError("Invalid email address.")
        payload.name = payload.name.strip() if payload.name else None
        if not payload.name:
            payload.name = payload.email.split("@")[0]
        return payload


class UserResponse(BaseModel):
    id: int
    email: str
    name: str | None = None
    currency: str
    created_at: datetime | None = None


class UserSettingsPayload(BaseModel):
    currency: str | None = None


class UserSettingsResponse(BaseModel):
    id: int
    email: str
    currency: str


class CategoryPayload(BaseModel):
    type: str
    name: str
    emoji: str | None = None
    color: str | None = None
    sort_order: float | None = None

    @classmethod
    def validate_payload(cls, payload: "CategoryPayload") -> "CategoryPayload":
        payload.type = BudgetType.validate(payload.type)
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Name is required.")
        payload.emoji = payload.emoji.strip() if payload.emoji else None
        payload.color = payload.color.strip() if payload.color else None
        return payload


class CategoryUpdatePayload(BaseModel):
    name: str | None = None
    emoji: str | None = None
    color: str | None = None

    def to_update(self) -> CategoryUpdate:
        name = None
        if self.name is not None:
            name = self.name.strip()
            if not name:
                raise ValueError("Name is required.")
        return CategoryUpdate(
            name=name,
            emoji=self.emoji.strip() if self.emoji else None,
            color=self.color.strip() if self.color else None,
        )


class CategoryResponse(BaseModel):
    id: int
    user_id: int
    type: str
    name: str
    emoji: str | None = None
    color: str | None = None
    sort_order: float
    is_archived: bool
    archived_at: datetime | None = None


class RecurrencePayload(BaseModel):
    frequency: str | None = None
    start_date: date | None = None
    day_of_week: str | None = None
    day_of_month: int | None = None
    day_of_month_is_last: bool = False
    second_day_of_month: int | None = None
    second_day_of_month_is_last: bool = False

    def has_recurrence_fields(self) -> bool:
        return any(
            (
                self.frequency is not None,
                self.start_date is not None,
                self.day_of_week is not None,
                self.day_of_month is not None,
                self.day_of_month_is_last,
                self.second_day_of_month is not None,
                self.second_day_of_month_is_last,
            )
        )

    def to_recurrence(self) -> RecurrenceDescriptor:
        return validate_recurrence(
            RecurrenceDescriptor(
                frequency=self.frequency,
                day_of_week=self.day_of_week,
                day_of_month=self.day_of_month,
                day_of_month_is_last=self.day_of_month_is_last,
                second_day_of_month=self.second_day_of_month,
                second_day_of_month_is_last=self.second_day_of_month_is_last,
                start_date=self.start_date,
            )
        )


class ItemPayload(RecurrencePayload):
    type: str
    name: str
    amount: int = 0
    category_id: int | None = None
    new_category_name: str | None = None
    new_category_emoji: str | None = None
    sort_order: float | None = None

    @classmethod
    def validate_payload(cls, payload: "ItemPayload") -> NewBudgetItem:
        budget_type = BudgetType.validate(payload.type)
        name = payload.name.strip()
        if not name:
            raise ValueError("Name is required.")
        if payload.amount < 0:
            raise ValueError("Amount cannot be negative.")
        if payload.amount > MAX_AMOUNT:
            raise ValueError("Amount is too large.")
        new_category_name = (
            payload.new_category_name.strip() if payload.new_category_name else None
        )
        if (payload.category_id is None) == (new_category_name is None):
            raise ValueError("Choose an existing category or name a new one.")
        if payload.category_id is not None:
            category = ExistingCategory(id=payload.category_id)
        else:
            category = NewCategory(
                name=new_category_name,
                emoji=payload.new_category_emoji.strip()
                if payload.new_category_emoji
                else None,
            )
        recurrence = payload.to_recurrence()
        if recurrence.start_date is None:
            recurrence = replace(recurrence, start_date=date.today())
        return NewBudgetItem(
            category=category,
            type=budget_type,
            name=name,
            amount=payload.amount,
            recurrence=recurrence,
            sort_order=payload.sort_order,
        )


class ItemUpdatePayload(RecurrencePayload):
    name: str | None = None
    amount: int | None = None

    def to_update(self) -> ItemUpdate:
        name = None
        if self.name is not None:
            name = self.name.strip()
            if not name:
                raise ValueError("Name is required.")
        if self.amount is not None and self.amount < 0:
            raise ValueError("Amount cannot be negative.")
        if self.amount is not None and self.amount > MAX_AMOUNT:
            raise ValueError("Amount is too large.")
        recurrence = None
        if self.has_recurrence_fields():
            if self.frequency is None:
                raise ValueError("Frequency is required when changing the schedule.")
            recurrence = self.to_recurrence()
        return ItemUpdate(name=name, amount=self.amount, recurrence=recurrence)


class ItemResponse(BaseModel):
    id: int
    category_id: int
    type: str
    name: str
    amount: int
    frequency: str
    start_date: date | None = None
    day_of_week: str | None = None
    day_of_month: int | None = None
    day_of_month_is_last: bool
    second_day_of_month: int | None = None
    second_day_of_month_is_last: bool
    sort_order: float
    is_archived: bool
    archived_at: datetime | None = None
    monthly_amount: int
    schedule_label: str


class ReorderPayload(BaseModel):
    previous_id: int | None = None
    next_id: int | None = None


class ActionResponse(BaseModel):
    success: bool
    error: str | None = None
    data: dict | None = None


class CategorySummaryResponse(BaseModel):
    category_id: int
    type: str
    name: str
    emoji: str | None = None
    monthly_total: int
    display_total: str


class BudgetSummaryResponse(BaseModel):
    month: str
    currency: str
    income_total: int
    expense_total: int
    savings_total: int
    net_total: int
    display_net_total: str
    categories: list[CategorySummaryResponse]


class TransactionPayload(BaseModel):
    type: str
    label: str
    category_name: str
    amount: Decimal
    date: date
    memo: str | None = None

    @classmethod
    def validate_payload(
        cls, payload: "TransactionPayload", currency: str
    ) -> NewTransaction:
        budget_type = BudgetType.validate(payload.type)
        label = payload.label.strip()
        if not label:
            raise ValueError("Label is required.")
        category_name = payload.category_name.strip()
        if not category_name:
            raise ValueError("Category is required.")
        if payload.amount <= 0:
            raise ValueError("Amount must be greater than zero.")
        amount = to_minor_units(payload.amount, currency)
        if amount > MAX_AMOUNT:
            raise ValueError("Amount is too large.")
        if amount == 0:
            raise ValueError("Amount must be greater than zero.")
        return NewTransaction(
            category_name=category_name,
            type=budget_type,
            label=label,
            amount=amount,
            date=payload.date,
            memo=payload.memo.strip() if payload.memo else None,
        )


class TransactionResponse(BaseModel):
    id: int
    category_id: int
    type: str
    label: str | None = None
    amount: int
    display_amount: str
    date: date
    memo: str | None = None


class CategoryTransactionsResponse(BaseModel):
    category_id: int
    type: str
    name: str
    emoji: str | None = None
    transactions: list[TransactionResponse]


def get_user_id(x_user_id: str | None = Header(None)) -> int:
    auth_id = x_user_id.strip() if x_user_id else ""
    if not auth_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    with engine.begin() as conn:
        user_id = conn.execute(
            select(users.c.id).where(users.c.auth_id == auth_id)
        ).scalar_one_or_none()
    if user_id is None:
        raise HTTPException(status_code=404, detail="User not found.")
    return user_id


def resolve_user_currency(conn, user_id: int) -> str:
    currency = conn.execute(
        select(users.c.currency).where(users.c.id == user_id)
    ).scalar_one_or_none()
    if currency:
        try:
            return normalize_currency(currency)
        except ValueError:
            pass
    return SYSTEM_DEFAULT_CURRENCY


def parse_month_value(value: str | None) -> date:
    if not value:
        return date.today().replace(day=1)
    try:
        return datetime.strptime(value, "%Y-%m").date()
    except ValueError:
        try:
            return datetime.strptime(value, "%Y-%m-%d").date().replace(day=1)
        except ValueError as exc:
            raise ValueError("Invalid month format. Use YYYY-MM.") from exc


def parse_budget_type(value: str | None) -> str | None:
    if value is None:
        return None
    return BudgetType.validate(value)


def action_error_response(result: ActionResult) -> JSONResponse:
    return JSONResponse(
        status_code=ACTION_ERROR_STATUS.get(result.error_kind, 400),
        content={"success": False, "error": result.error},
    )


def render_action(result: ActionResult) -> ActionResponse | JSONResponse:
    if not result.success:
        return action_error_response(result)
    return ActionResponse(success=True, data=result.data)


def category_response(category: BudgetCategory) -> CategoryResponse:
    return CategoryResponse(
        id=category.id,
        user_id=category.user_id,
        type=category.type,
        name=category.name,
        emoji=category.emoji,
        color=category.color,
        sort_order=category.sort_order,
        is_archived=category.is_archived,
        archived_at=category.archived_at,
    )


def item_response(item: BudgetItem, reference_month: date) -> ItemResponse:
    recurrence = item.recurrence
    return ItemResponse(
        id=item.id,
        category_id=item.category_id,
        type=item.type,
        name=item.name,
        amount=item.amount,
        frequency=recurrence.frequency,
        start_date=recurrence.start_date,
        day_of_week=recurrence.day_of_week,
        day_of_month=recurrence.day_of_month,
        day_of_month_is_last=recurrence.day_of_month_is_last,
        second_day_of_month=recurrence.second_day_of_month,
        second_day_of_month_is_last=recurrence.second_day_of_month_is_last,
        sort_order=item.sort_order,
        is_archived=item.is_archived,
        archived_at=item.archived_at,
        monthly_amount=monthly_equivalent(item.amount, recurrence, reference_month),
        schedule_label=describe_recurrence(recurrence, reference_month),
    )


def transaction_response(
    transaction: BudgetTransaction, currency: str
) -> TransactionResponse:
    return TransactionResponse(
        id=transaction.id,
        category_id=transaction.category_id,
        type=transaction.type,
        label=transaction.label,
        amount=transaction.amount,
        display_amount=format_amount(transaction.amount, currency),
        date=transaction.date,
        memo=transaction.memo,
    )


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/users/sync", response_model=UserResponse)
def sync_user(
    payload: UserSyncPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UserResponse:
    auth_id = x_user_id.strip() if x_user_id else ""
    if not auth_id:
        raise HTTPException(status_code=401, detail="Missing user identity.")
    try:
        payload = UserSyncPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    lookup = select(users).where(users.c.auth_id == auth_id)
    try:
        with engine.begin() as conn:
            row = conn.execute(lookup).mappings().first()
            if not row:
                row = conn.execute(
                    insert(users)
                    .values(
                        auth_id=auth_id,
                        email=payload.email,
                        name=payload.name,
                        currency=SYSTEM_DEFAULT_CURRENCY,
                    )
                    .returning(*users.c)
                ).mappings().first()
    except IntegrityError:
        # Another request registered the same identity first.
        with engine.begin() as conn:
            row = conn.execute(lookup).mappings().first()

    if not row:
        raise HTTPException(status_code=500, detail="Failed to create user.")
    return UserResponse(
        id=row["id"],
        email=row["email"],
        name=row["name"],
        currency=row["currency"],
        created_at=row["created_at"],
    )


@app.get("/users/me/settings", response_model=UserSettingsResponse)
def get_user_settings(
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UserSettingsResponse:
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        row = conn.execute(select(users).where(users.c.id == user_id)).mappings().first()
        if not row:
            raise HTTPException(status_code=404, detail="User not found.")
        currency = resolve_user_currency(conn, user_id)
    return UserSettingsResponse(id=row["id"], email=row["email"], currency=currency)


@app.put("/users/me/settings", response_model=UserSettingsResponse)
def update_user_settings(
    payload: UserSettingsPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> UserSettingsResponse:
    user_id = get_user_id(x_user_id)
    if payload.currency is None:
        raise HTTPException(status_code=400, detail="Currency required.")
    try:
        normalized_currency = normalize_currency(payload.currency)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with engine.begin() as conn:
        row = conn.execute(
            update(users)
            .where(users.c.id == user_id)
            .values(currency=normalized_currency)
            .returning(users.c.id, users.c.email, users.c.currency)
        ).mappings().first()
        if not row:
            raise HTTPException(status_code=404, detail="User not found.")
    return UserSettingsResponse(id=row["id"], email=row["email"], currency=row["currency"])


@app.get("/budget/categories", response_model=list[CategoryResponse])
def get_budget_categories(
    type: str | None = Query(None),
    include_archived: bool = Query(False),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[CategoryResponse]:
    user_id = get_user_id(x_user_id)
    try:
        budget_type = parse_budget_type(type)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with engine.begin() as conn:
        categories = list_categories(conn, user_id, budget_type, include_archived)
    return [category_response(category) for category in categories]


@app.post("/budget/categories", response_model=CategoryResponse)
def create_budget_category(
    payload: CategoryPayload, x_user_id: str | None = Header(None, alias="x-user-id")
):
    user_id = get_user_id(x_user_id)
    try:
        payload = CategoryPayload.validate_payload(payload)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    result = run_action(
        engine,
        lambda conn: create_category(
            conn,
            user_id,
            payload.type,
            payload.name,
            emoji=payload.emoji,
            color=payload.color,
            sort_order=payload.sort_order,
        ),
        "Failed to create budget category.",
    )
    if not result.success:
        return action_error_response(result)
    return category_response(result.data)


@app.put("/budget/categories/{category_id}", response_model=CategoryResponse)
def update_budget_category(
    category_id: int,
    payload: CategoryUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
):
    user_id = get_user_id(x_user_id)
    try:
        changes = payload.to_update()
        result = run_action(
            engine,
            lambda conn: update_category(conn, user_id, category_id, changes),
            "Failed to update budget category.",
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not result.success:
        return action_error_response(result)
    if result.data is None:
        raise HTTPException(status_code=404, detail="Budget category not found.")
    return category_response(result.data)


@app.post("/budget/categories/{category_id}/archive", response_model=ActionResponse)
def archive_budget_category(
    category_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
):
    user_id = get_user_id(x_user_id)
    return render_action(archive_category(engine, user_id, category_id))


@app.post("/budget/categories/{category_id}/unarchive", response_model=ActionResponse)
def unarchive_budget_category(
    category_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
):
    user_id = get_user_id(x_user_id)
    return render_action(unarchive_category(engine, user_id, category_id))


@app.post("/budget/categories/{category_id}/reorder", response_model=ActionResponse)
def reorder_budget_category(
    category_id: int,
    payload: ReorderPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
):
    user_id = get_user_id(x_user_id)
    return render_action(
        reorder_category(engine, user_id, category_id, payload.previous_id, payload.next_id)
    )


@app.get("/budget/items", response_model=list[ItemResponse])
def get_budget_items(
    type: str | None = Query(None),
    category_id: int | None = Query(None),
    include_archived: bool = Query(False),
    month: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[ItemResponse]:
    user_id = get_user_id(x_user_id)
    try:
        budget_type = parse_budget_type(type)
        reference_month = parse_month_value(month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with engine.begin() as conn:
        items = list_items(conn, user_id, budget_type, category_id, include_archived)
    return [item_response(item, reference_month) for item in items]


@app.post("/budget/items", response_model=ItemResponse)
def create_budget_item(
    payload: ItemPayload, x_user_id: str | None = Header(None, alias="x-user-id")
):
    user_id = get_user_id(x_user_id)
    try:
        new_item = ItemPayload.validate_payload(payload)
        result = run_action(
            engine,
            lambda conn: create_item(conn, user_id, new_item),
            "Failed to create budget item.",
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not result.success:
        return action_error_response(result)
    return item_response(result.data, date.today())


@app.put("/budget/items/{item_id}", response_model=ItemResponse)
def update_budget_item(
    item_id: int,
    payload: ItemUpdatePayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
):
    user_id = get_user_id(x_user_id)
    try:
        changes = payload.to_update()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    result = run_action(
        engine,
        lambda conn: update_item(conn, user_id, item_id, changes),
        "Failed to update budget item.",
    )
    if not result.success:
        return action_error_response(result)
    if result.data is None:
        raise HTTPException(status_code=404, detail="Budget item not found.")
    return item_response(result.data, date.today())


@app.post("/budget/items/{item_id}/archive", response_model=ActionResponse)
def archive_budget_item(item_id: int, x_user_id: str | None = Header(None, alias="x-user-id")):
    user_id = get_user_id(x_user_id)
    return render_action(archive_item(engine, user_id, item_id))


@app.post("/budget/items/{item_id}/unarchive", response_model=ActionResponse)
def unarchive_budget_item(
    item_id: int, x_user_id: str | None = Header(None, alias="x-user-id")
):
    user_id = get_user_id(x_user_id)
    return render_action(unarchive_item(engine, user_id, item_id))


@app.post("/budget/items/{item_id}/reorder", response_model=ActionResponse)
def reorder_budget_item(
    item_id: int,
    payload: ReorderPayload,
    x_user_id: str | None = Header(None, alias="x-user-id"),
):
    user_id = get_user_id(x_user_id)
    return render_action(
        reorder_item(engine, user_id, item_id, payload.previous_id, payload.next_id)
    )


@app.get("/budget/summary", response_model=BudgetSummaryResponse)
def get_budget_summary(
    month: str | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> BudgetSummaryResponse:
    user_id = get_user_id(x_user_id)
    try:
        reference_month = parse_month_value(month)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    with engine.begin() as conn:
        currency = resolve_user_currency(conn, user_id)
        categories = list_categories(conn, user_id)
        items = list_items(conn, user_id)

    summary = summarize_budget(categories, items, reference_month)
    categories_by_id = {category.id: category for category in categories}
    return BudgetSummaryResponse(
        month=summary.month.strftime("%Y-%m"),
        currency=currency,
        income_total=summary.income_total,
        expense_total=summary.expense_total,
        savings_total=summary.savings_total,
        net_total=summary.net_total,
        display_net_total=format_amount(summary.net_total, currency),
        categories=[
            CategorySummaryResponse(
                category_id=entry.category_id,
                type=entry.type,
                name=categories_by_id[entry.category_id].name,
                emoji=categories_by_id[entry.category_id].emoji,
                monthly_total=entry.monthly_total,
                display_total=format_amount(entry.monthly_total, currency),
            )
            for entry in summary.categories
        ],
    )


@app.get("/budget/transactions", response_model=list[TransactionResponse])
def get_budget_transactions(
    type: str | None = Query(None),
    category_id: int | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[TransactionResponse]:
    user_id = get_user_id(x_user_id)
    try:
        budget_type = parse_budget_type(type)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with engine.begin() as conn:
        currency = resolve_user_currency(conn, user_id)
        rows = list_transactions(conn, user_id, budget_type, category_id)
    return [transaction_response(transaction, currency) for transaction in rows]


@app.get(
    "/budget/transactions/by-category",
    response_model=list[CategoryTransactionsResponse],
)
def get_transactions_by_category(
    type: list[str] | None = Query(None),
    x_user_id: str | None = Header(None, alias="x-user-id"),
) -> list[CategoryTransactionsResponse]:
    user_id = get_user_id(x_user_id)
    try:
        budget_types = [BudgetType.validate(value) for value in type or ("income", "expense")]
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    with engine.begin() as conn:
        currency = resolve_user_currency(conn, user_id)
        groups = list_category_transactions(conn, user_id, budget_types)
    return [
        CategoryTransactionsResponse(
            category_id=category.id,
            type=category.type,
            name=category.name,
            emoji=category.emoji,
            transactions=[
                transaction_response(transaction, currency) for transaction in rows
            ],
        )
        for category, rows in groups
    ]


@app.post("/budget/transactions", response_model=TransactionResponse)
def create_budget_transaction(
    payload: TransactionPayload, x_user_id: str | None = Header(None, alias="x-user-id")
):
    user_id = get_user_id(x_user_id)
    with engine.begin() as conn:
        currency = resolve_user_currency(conn, user_id)
    try:
        new_transaction = TransactionPayload.validate_payload(payload, currency)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    result = run_action(
        engine,
        lambda conn: add_transaction(conn, user_id, new_transaction),
        "Failed to record transaction.",
    )
    if not result.success:
        return action_error_response(result)
    return transaction_response(result.data, currency)
