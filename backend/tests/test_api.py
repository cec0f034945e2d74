import unittest

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from backend import main
from backend.schema import metadata


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        metadata.create_all(self.engine)
        original_engine = main.engine
        main.engine = self.engine
        self.addCleanup(setattr, main, "engine", original_engine)
        self.addCleanup(self.engine.dispose)

        self.client = TestClient(main.app)
        self.headers = {"x-user-id": "auth|owner"}
        response = self.client.post(
            "/users/sync", json={"email": "Owner@Example.com"}, headers=self.headers
        )
        self.assertEqual(response.status_code, 200)
        self.user = response.json()

    def post_item(self, **fields):
        return self.client.post("/budget/items", json=fields, headers=self.headers)


class UserEndpointTests(ApiTestCase):
    def test_health(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.json(), {"status": "ok"})

    def test_sync_is_idempotent(self) -> None:
        again = self.client.post(
            "/users/sync", json={"email": "owner@example.com"}, headers=self.headers
        )

        self.assertEqual(again.status_code, 200)
        self.assertEqual(again.json()["id"], self.user["id"])
        self.assertEqual(self.user["email"], "owner@example.com")
        self.assertEqual(self.user["name"], "owner")
        self.assertEqual(self.user["currency"], "USD")

    def test_missing_identity_is_unauthorized(self) -> None:
        response = self.client.get("/budget/categories")

        self.assertEqual(response.status_code, 401)

    def test_unknown_identity_is_not_found(self) -> None:
        response = self.client.get(
            "/budget/categories", headers={"x-user-id": "auth|stranger"}
        )

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["detail"], "User not found.")

    def test_currency_setting_changes_summary_display(self) -> None:
        response = self.client.put(
            "/users/me/settings", json={"currency": "eur"}, headers=self.headers
        )
        self.assertEqual(response.json()["currency"], "EUR")

        self.post_item(
            type="income",
            name="Paycheck",
            amount=123456,
            new_category_name="Salary",
            frequency="monthly",
            day_of_month=1,
        )
        summary = self.client.get(
            "/budget/summary", params={"month": "2025-01"}, headers=self.headers
        ).json()

        self.assertEqual(summary["currency"], "EUR")
        self.assertEqual(summary["display_net_total"], "€1,234.56")

    def test_invalid_currency_is_rejected(self) -> None:
        response = self.client.put(
            "/users/me/settings", json={"currency": "euro"}, headers=self.headers
        )

        self.assertEqual(response.status_code, 400)


class CategoryEndpointTests(ApiTestCase):
    def test_create_category_is_idempotent(self) -> None:
        first = self.client.post(
            "/budget/categories",
            json={"type": "expense", "name": " Food ", "emoji": "🍎"},
            headers=self.headers,
        )
        second = self.client.post(
            "/budget/categories",
            json={"type": "Expense", "name": "Food"},
            headers=self.headers,
        )

        self.assertEqual(first.status_code, 200)
        self.assertEqual(first.json()["name"], "Food")
        self.assertEqual(first.json()["id"], second.json()["id"])
        listed = self.client.get(
            "/budget/categories", params={"type": "expense"}, headers=self.headers
        ).json()
        self.assertEqual(len(listed), 1)

    def test_invalid_type_is_rejected(self) -> None:
        response = self.client.post(
            "/budget/categories",
            json={"type": "debt", "name": "Loans"},
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 400)

    def test_archive_hides_category_and_items(self) -> None:
        item = self.post_item(
            type="expense",
            name="Groceries",
            amount=5000,
            new_category_name="Food",
            frequency="monthly",
            day_of_month=1,
        ).json()

        response = self.client.post(
            f"/budget/categories/{item['category_id']}/archive", headers=self.headers
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["archived_items"], 1)
        self.assertEqual(
            self.client.get("/budget/categories", headers=self.headers).json(), []
        )
        self.assertEqual(self.client.get("/budget/items", headers=self.headers).json(), [])

    def test_reorder_reports_plan_kind(self) -> None:
        ids = [
            self.client.post(
                "/budget/categories",
                json={"type": "expense", "name": name},
                headers=self.headers,
            ).json()["id"]
            for name in ("Housing", "Food", "Travel")
        ]

        response = self.client.post(
            f"/budget/categories/{ids[2]}/reorder",
            json={"previous_id": ids[0], "next_id": ids[1]},
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["kind"], "single")
        listed = self.client.get("/budget/categories", headers=self.headers).json()
        self.assertEqual([row["id"] for row in listed], [ids[0], ids[2], ids[1]])

    def test_rename_to_existing_name_is_rejected(self) -> None:
        self.client.post(
            "/budget/categories",
            json={"type": "expense", "name": "Food"},
            headers=self.headers,
        )
        dining = self.client.post(
            "/budget/categories",
            json={"type": "expense", "name": "Dining"},
            headers=self.headers,
        ).json()

        response = self.client.put(
            f"/budget/categories/{dining['id']}",
            json={"name": " Food "},
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json()["detail"], "A category with this name already exists."
        )
        names = [
            row["name"]
            for row in self.client.get("/budget/categories", headers=self.headers).json()
        ]
        self.assertEqual(names, ["Food", "Dining"])

    def test_reorder_unknown_category_is_not_found(self) -> None:
        response = self.client.post(
            "/budget/categories/9999/reorder", json={}, headers=self.headers
        )

        self.assertEqual(response.status_code, 404)
        self.assertEqual(
            response.json(), {"success": False, "error": "Budget category not found."}
        )


class ItemEndpointTests(ApiTestCase):
    def test_item_with_new_category_reports_monthly_amount(self) -> None:
        created = self.post_item(
            type="expense",
            name="Groceries",
            amount=10000,
            new_category_name="Food",
            frequency="weekly",
            day_of_week="Monday",
        )
        self.assertEqual(created.status_code, 200)

        items = self.client.get(
            "/budget/items", params={"month": "2025-01"}, headers=self.headers
        ).json()

        self.assertEqual(len(items), 1)
        self.assertEqual(items[0]["day_of_week"], "monday")
        self.assertEqual(items[0]["monthly_amount"], 40000)
        self.assertEqual(items[0]["schedule_label"], "Mon")
        self.assertIsNotNone(items[0]["start_date"])

    def test_invalid_schedule_is_rejected_before_write(self) -> None:
        response = self.post_item(
            type="income",
            name="Paycheck",
            amount=1000,
            new_category_name="Salary",
            frequency="semi-monthly",
            day_of_month=28,
            second_day_of_month_is_last=True,
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            self.client.get("/budget/categories", headers=self.headers).json(), []
        )

    def test_category_choice_must_be_exactly_one(self) -> None:
        category = self.client.post(
            "/budget/categories",
            json={"type": "expense", "name": "Food"},
            headers=self.headers,
        ).json()

        both = self.post_item(
            type="expense",
            name="Groceries",
            amount=100,
            category_id=category["id"],
            new_category_name="Food",
            frequency="monthly",
            day_of_month=1,
        )
        neither = self.post_item(
            type="expense",
            name="Groceries",
            amount=100,
            frequency="monthly",
            day_of_month=1,
        )

        self.assertEqual(both.status_code, 400)
        self.assertEqual(neither.status_code, 400)

    def test_item_type_must_match_category(self) -> None:
        category = self.client.post(
            "/budget/categories",
            json={"type": "savings", "name": "Rainy day"},
            headers=self.headers,
        ).json()

        response = self.post_item(
            type="expense",
            name="Transfer",
            amount=100,
            category_id=category["id"],
            frequency="monthly",
            day_of_month=1,
        )

        self.assertEqual(response.status_code, 400)

    def test_update_schedule_requires_frequency(self) -> None:
        item = self.post_item(
            type="expense",
            name="Rent",
            amount=150000,
            new_category_name="Home",
            frequency="monthly",
            day_of_month=1,
        ).json()

        missing = self.client.put(
            f"/budget/items/{item['id']}", json={"day_of_month": 5}, headers=self.headers
        )
        changed = self.client.put(
            f"/budget/items/{item['id']}",
            json={"frequency": "monthly", "day_of_month_is_last": True, "amount": 160000},
            headers=self.headers,
        )

        self.assertEqual(missing.status_code, 400)
        self.assertEqual(changed.status_code, 200)
        self.assertEqual(changed.json()["amount"], 160000)
        self.assertTrue(changed.json()["day_of_month_is_last"])
        self.assertIsNone(changed.json()["day_of_month"])
        self.assertEqual(changed.json()["schedule_label"], "Last day")

    def test_schedule_edit_keeps_start_date(self) -> None:
        item = self.post_item(
            type="expense",
            name="Gym",
            amount=4000,
            new_category_name="Health",
            frequency="monthly",
            day_of_month=1,
            start_date="2020-01-15",
        ).json()

        response = self.client.put(
            f"/budget/items/{item['id']}",
            json={"frequency": "monthly", "day_of_month": 5},
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["day_of_month"], 5)
        self.assertEqual(response.json()["start_date"], "2020-01-15")

        moved = self.client.put(
            f"/budget/items/{item['id']}",
            json={"frequency": "monthly", "day_of_month": 5, "start_date": "2021-03-01"},
            headers=self.headers,
        )
        self.assertEqual(moved.json()["start_date"], "2021-03-01")

    def test_oversized_amount_is_rejected(self) -> None:
        created = self.post_item(
            type="expense",
            name="Yacht",
            amount=10**20,
            new_category_name="Toys",
            frequency="monthly",
            day_of_month=1,
        )
        item = self.post_item(
            type="expense",
            name="Boat",
            amount=100,
            new_category_name="Toys",
            frequency="monthly",
            day_of_month=1,
        ).json()
        updated = self.client.put(
            f"/budget/items/{item['id']}", json={"amount": 10**20}, headers=self.headers
        )

        self.assertEqual(created.status_code, 400)
        self.assertEqual(created.json()["detail"], "Amount is too large.")
        self.assertEqual(updated.status_code, 400)
        listed = self.client.get("/budget/items", headers=self.headers).json()
        self.assertEqual([row["amount"] for row in listed], [100])

    def test_update_unknown_item_is_not_found(self) -> None:
        response = self.client.put(
            "/budget/items/9999", json={"name": "Ghost"}, headers=self.headers
        )

        self.assertEqual(response.status_code, 404)


class TransactionEndpointTests(ApiTestCase):
    def post_transaction(self, **fields):
        return self.client.post("/budget/transactions", json=fields, headers=self.headers)

    def test_transaction_amount_is_rounded_to_cents(self) -> None:
        response = self.post_transaction(
            type="expense",
            label="Market",
            category_name="Food",
            amount="12.345",
            date="2025-01-03",
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["amount"], 1235)
        self.assertEqual(body["display_amount"], "$12.35")
        self.assertEqual(body["date"], "2025-01-03")
        categories = self.client.get(
            "/budget/categories", params={"type": "expense"}, headers=self.headers
        ).json()
        self.assertEqual([row["id"] for row in categories], [body["category_id"]])

    def test_transactions_share_category_and_list_newest_first(self) -> None:
        first = self.post_transaction(
            type="expense", label="Market", category_name="Food", amount=42, date="2025-01-03"
        ).json()
        second = self.post_transaction(
            type="expense", label="Bakery", category_name="Food", amount=6, date="2025-01-20"
        ).json()

        listed = self.client.get(
            "/budget/transactions", params={"type": "expense"}, headers=self.headers
        ).json()

        self.assertEqual(first["category_id"], second["category_id"])
        self.assertEqual([row["label"] for row in listed], ["Bakery", "Market"])

    def test_by_category_defaults_to_income_and_expense(self) -> None:
        self.post_transaction(
            type="income", label="Paycheck", category_name="Salary", amount=2500, date="2025-01-15"
        )
        self.post_transaction(
            type="expense", label="Market", category_name="Food", amount=42, date="2025-01-03"
        )
        self.post_transaction(
            type="savings",
            label="Transfer",
            category_name="Emergency fund",
            amount=50,
            date="2025-01-03",
        )

        groups = self.client.get(
            "/budget/transactions/by-category", headers=self.headers
        ).json()
        savings = self.client.get(
            "/budget/transactions/by-category",
            params={"type": "savings"},
            headers=self.headers,
        ).json()

        self.assertEqual({group["name"] for group in groups}, {"Salary", "Food"})
        salary = next(group for group in groups if group["name"] == "Salary")
        self.assertEqual(salary["transactions"][0]["amount"], 250000)
        self.assertEqual([group["name"] for group in savings], ["Emergency fund"])

    def test_invalid_transactions_are_rejected(self) -> None:
        zero = self.post_transaction(
            type="expense", label="Nothing", category_name="Food", amount="0.001", date="2025-01-03"
        )
        negative = self.post_transaction(
            type="expense", label="Refund", category_name="Food", amount=-5, date="2025-01-03"
        )
        blank = self.post_transaction(
            type="expense", label=" ", category_name="Food", amount=5, date="2025-01-03"
        )
        huge = self.post_transaction(
            type="expense", label="Island", category_name="Food", amount="1e20", date="2025-01-03"
        )

        for response in (zero, negative, blank, huge):
            self.assertEqual(response.status_code, 400)
        self.assertEqual(
            self.client.get("/budget/transactions", headers=self.headers).json(), []
        )


class SummaryEndpointTests(ApiTestCase):
    def test_summary_totals_for_month(self) -> None:
        self.post_item(
            type="income",
            name="Paycheck",
            amount=500000,
            new_category_name="Salary",
            frequency="monthly",
            day_of_month=1,
        )
        self.post_item(
            type="expense",
            name="Groceries",
            amount=10000,
            new_category_name="Food",
            frequency="weekly",
            day_of_week="monday",
        )
        self.post_item(
            type="savings",
            name="Transfer",
            amount=5000,
            new_category_name="Emergency fund",
            frequency="semi-monthly",
            day_of_month=1,
            second_day_of_month=15,
        )

        response = self.client.get(
            "/budget/summary", params={"month": "2025-01"}, headers=self.headers
        )

        self.assertEqual(response.status_code, 200)
        summary = response.json()
        self.assertEqual(summary["month"], "2025-01")
        self.assertEqual(summary["income_total"], 500000)
        self.assertEqual(summary["expense_total"], 40000)
        self.assertEqual(summary["savings_total"], 10000)
        self.assertEqual(summary["net_total"], 450000)
        self.assertEqual(summary["display_net_total"], "$4,500.00")
        self.assertEqual(
            {entry["name"]: entry["display_total"] for entry in summary["categories"]},
            {"Salary": "$5,000.00", "Food": "$400.00", "Emergency fund": "$100.00"},
        )

    def test_bad_month_is_rejected(self) -> None:
        response = self.client.get(
            "/budget/summary", params={"month": "January"}, headers=self.headers
        )

        self.assertEqual(response.status_code, 400)


if __name__ == "__main__":
    unittest.main()
