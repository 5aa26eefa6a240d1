"""
Tests for the storage backends.

The Google Sheets backend runs against an in-process fake worksheet;
no network calls are made.
"""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from expense_vault.models.audit import AuditEventBuilder
from expense_vault.models.expense import ExpenseRecord
from expense_vault.models.user import MasterKeyMaterial, UserAccount
from expense_vault.services.storage import (
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsExpenseStorage,
    GoogleSheetsUserStorage,
    InMemoryAuditStorage,
    InMemoryExpenseStorage,
    InMemoryUserStorage,
    NotFoundError,
)
from expense_vault.services.storage.google_sheets import (
    AUDIT_COLUMNS,
    EXPENSE_COLUMNS,
    KEY_MATERIAL_COLUMNS,
    USER_COLUMNS,
)


def _expense(user_id=None, title="Lunch", days_ago=0) -> ExpenseRecord:
    return ExpenseRecord(
        user_id=user_id,
        title=title,
        amount=Decimal("12.50"),
        category="Food",
        date=datetime(2024, 6, 30, 12, 0) - timedelta(days=days_ago),
    )


class FakeWorksheet:
    """Just enough of gspread.Worksheet for the storage classes."""

    def __init__(self, header: list[str]):
        self.rows = [list(header)]

    def append_row(self, row, value_input_option=None):
        self.rows.append([str(cell) for cell in row])

    def get_all_values(self):
        return [list(row) for row in self.rows]

    def update(self, range_name, values, value_input_option=None):
        index = int(range_name[1:]) - 1
        self.rows[index] = [str(cell) for cell in values[0]]

    def update_cell(self, row, col, value):
        self.rows[row - 1][col - 1] = str(value)

    def delete_rows(self, index):
        del self.rows[index - 1]


class FlakyWorksheet(FakeWorksheet):
    """Fails the first `failures` appends; `lands` writes the row before failing."""

    def __init__(self, header: list[str], failures: int = 1, lands: bool = False):
        super().__init__(header)
        self.failures = failures
        self.lands = lands

    def append_row(self, row, value_input_option=None):
        if self.failures:
            self.failures -= 1
            if self.lands:
                super().append_row(row, value_input_option)
            raise RuntimeError("503 backend error")
        super().append_row(row, value_input_option)


@pytest.fixture
def sheets_client():
    client = MagicMock()
    sheets = {
        "expenses": FakeWorksheet(EXPENSE_COLUMNS),
        "users": FakeWorksheet(USER_COLUMNS),
        "keys": FakeWorksheet(KEY_MATERIAL_COLUMNS),
        "audit": FakeWorksheet(AUDIT_COLUMNS),
    }
    client.get_expenses_sheet.return_value = sheets["expenses"]
    client.get_users_sheet.return_value = sheets["users"]
    client.get_key_material_sheet.return_value = sheets["keys"]
    client.get_audit_sheet.return_value = sheets["audit"]
    client.sheets = sheets
    return client


class TestInMemoryExpenseStorage:
    """Tests for the in-memory expense store."""

    def test_list_is_owner_scoped_and_newest_first(self):
        """Only the owner's expenses come back, newest first."""
        alice, bob = uuid4(), uuid4()
        storage = InMemoryExpenseStorage()

        async def scenario():
            await storage.save_expense(_expense(alice, "older", days_ago=2))
            await storage.save_expense(_expense(alice, "newer", days_ago=1))
            await storage.save_expense(_expense(bob, "bob's"))
            return await storage.list_expenses(alice)

        titles = [e.title for e in asyncio.run(scenario())]
        assert titles == ["newer", "older"]

    def test_date_range_and_paging(self):
        """date_from/date_to filter; limit/offset page."""
        user_id = uuid4()
        storage = InMemoryExpenseStorage([_expense(user_id, f"e{i}", days_ago=i) for i in range(5)])
        start = datetime(2024, 6, 30, 12, 0) - timedelta(days=3)

        async def scenario():
            in_range = await storage.list_expenses(user_id, date_from=start)
            page = await storage.list_expenses(user_id, limit=2, offset=1)
            return in_range, page

        in_range, page = asyncio.run(scenario())
        assert [e.title for e in in_range] == ["e0", "e1", "e2", "e3"]
        assert [e.title for e in page] == ["e1", "e2"]

    def test_duplicate_id_rejected(self):
        """Saving the same id twice is a DuplicateError."""
        storage = InMemoryExpenseStorage()
        expense = _expense(uuid4())

        async def scenario():
            await storage.save_expense(expense)
            await storage.save_expense(expense)

        with pytest.raises(DuplicateError):
            asyncio.run(scenario())

    def test_update_other_users_expense(self):
        """Updating someone else's expense is NotFound."""
        expense = _expense(uuid4())
        storage = InMemoryExpenseStorage([expense])
        hijacked = expense.model_copy(update={"user_id": uuid4(), "title": "mine now"})
        with pytest.raises(NotFoundError):
            asyncio.run(storage.update_expense(hijacked))

    def test_delete_is_owner_scoped(self):
        """Only the owner can delete; deleting twice returns False."""
        owner = uuid4()
        expense = _expense(owner)
        storage = InMemoryExpenseStorage([expense])

        async def scenario():
            return (
                await storage.delete_expense(uuid4(), expense.id),
                await storage.delete_expense(owner, expense.id),
                await storage.delete_expense(owner, expense.id),
            )

        assert asyncio.run(scenario()) == (False, True, False)

    def test_assign_unowned_expenses(self):
        """Rows without an owner are adopted; owned rows are left alone."""
        user_id, other = uuid4(), uuid4()
        storage = InMemoryExpenseStorage([_expense(None), _expense(None), _expense(other)])

        async def scenario():
            adopted = await storage.assign_unowned_expenses(user_id)
            return adopted, await storage.list_expenses(user_id)

        adopted, mine = asyncio.run(scenario())
        assert adopted == 2
        assert len(mine) == 2


class TestInMemoryUserStorage:
    """Tests for the in-memory user store."""

    def test_create_and_lookup(self):
        """Users are found by name and id; key material is tied to the user."""
        storage = InMemoryUserStorage()
        user = UserAccount(username="alice", password_hash="$2b$04$x")
        material = MasterKeyMaterial(wrapped_master_key="a:b:c", salt="c2FsdA==")

        async def scenario():
            await storage.create_user(user, material)
            return (
                await storage.get_user_by_username("alice"),
                await storage.get_user(user.id),
                await storage.count_users(),
                await storage.get_key_material(user.id),
            )

        by_name, by_id, count, stored = asyncio.run(scenario())
        assert by_name == user
        assert by_id == user
        assert count == 1
        assert stored.user_id == user.id
        assert stored.wrapped_master_key == "a:b:c"

    def test_duplicate_username(self):
        """Usernames are unique."""
        storage = InMemoryUserStorage()

        async def scenario():
            await storage.create_user(UserAccount(username="alice", password_hash="h1"))
            await storage.create_user(UserAccount(username="alice", password_hash="h2"))

        with pytest.raises(DuplicateError):
            asyncio.run(scenario())


class TestGoogleSheetsStorage:
    """Tests for the Google Sheets backend against a fake worksheet."""

    def test_expense_round_trip(self, sheets_client):
        """Saved expenses read back with the same values."""
        storage = GoogleSheetsExpenseStorage(sheets_client)
        user_id = uuid4()
        expense = _expense(user_id).model_copy(update={"note": "iv:ct:tag"})

        async def scenario():
            await storage.save_expense(expense)
            return await storage.get_expense(user_id, expense.id)

        loaded = asyncio.run(scenario())
        assert loaded == expense

    def test_update_and_delete(self, sheets_client):
        """Updates rewrite the row in place; deletes remove it."""
        storage = GoogleSheetsExpenseStorage(sheets_client)
        user_id = uuid4()
        expense = _expense(user_id)

        async def scenario():
            await storage.save_expense(expense)
            await storage.update_expense(expense.model_copy(update={"title": "Dinner"}))
            updated = await storage.get_expense(user_id, expense.id)
            deleted = await storage.delete_expense(user_id, expense.id)
            return updated, deleted, await storage.list_expenses(user_id)

        updated, deleted, remaining = asyncio.run(scenario())
        assert updated.title == "Dinner"
        assert deleted is True
        assert remaining == []

    def test_update_missing_expense(self, sheets_client):
        """NotFoundError is raised straight away, not retried."""
        storage = GoogleSheetsExpenseStorage(sheets_client)
        with pytest.raises(NotFoundError):
            asyncio.run(storage.update_expense(_expense(uuid4())))

    def test_malformed_rows_are_skipped(self, sheets_client):
        """A broken row does not break the listing."""
        storage = GoogleSheetsExpenseStorage(sheets_client)
        user_id = uuid4()
        sheets_client.sheets["expenses"].append_row(
            [str(uuid4()), str(user_id), "x", "not a number", "y", "", "bad date", ""]
        )

        async def scenario():
            await storage.save_expense(_expense(user_id))
            return await storage.list_expenses(user_id)

        assert len(asyncio.run(scenario())) == 1

    def test_assign_unowned_expenses(self, sheets_client):
        """Legacy rows get the new owner's id."""
        storage = GoogleSheetsExpenseStorage(sheets_client)
        user_id = uuid4()

        async def scenario():
            await storage.save_expense(_expense(None))
            adopted = await storage.assign_unowned_expenses(user_id)
            return adopted, await storage.list_expenses(user_id)

        adopted, mine = asyncio.run(scenario())
        assert adopted == 1
        assert mine[0].user_id == user_id

    def test_users_and_key_material(self, sheets_client):
        """Users and their wrapped keys are stored in separate sheets."""
        storage = GoogleSheetsUserStorage(sheets_client)
        user = UserAccount(username="alice", password_hash="$2b$04$x")
        material = MasterKeyMaterial(wrapped_master_key="a:b:c", salt="c2FsdA==")

        async def scenario():
            await storage.create_user(user, material)
            return (
                await storage.get_user_by_username("alice"),
                await storage.count_users(),
                await storage.get_key_material(user.id),
            )

        loaded, count, stored = asyncio.run(scenario())
        assert loaded == user
        assert count == 1
        assert stored.salt == "c2FsdA=="
        assert len(sheets_client.sheets["keys"].rows) == 2

    def test_duplicate_username(self, sheets_client):
        """Usernames are unique in the sheet too."""
        storage = GoogleSheetsUserStorage(sheets_client)

        async def scenario():
            await storage.create_user(UserAccount(username="alice", password_hash="h1"))
            await storage.create_user(UserAccount(username="alice", password_hash="h2"))

        with pytest.raises(DuplicateError):
            asyncio.run(scenario())

    def test_key_material_append_is_retried_alone(self, sheets_client):
        """A failed key material write is retried without re-checking the username."""
        keys = FlakyWorksheet(KEY_MATERIAL_COLUMNS)
        sheets_client.get_key_material_sheet.return_value = keys
        storage = GoogleSheetsUserStorage(sheets_client)
        user = UserAccount(username="alice", password_hash="$2b$04$x")
        material = MasterKeyMaterial(wrapped_master_key="a:b:c", salt="c2FsdA==")

        async def scenario():
            await storage.create_user(user, material)
            return await storage.count_users(), await storage.get_key_material(user.id)

        count, stored = asyncio.run(scenario())
        assert count == 1
        assert stored is not None
        assert stored.wrapped_master_key == "a:b:c"
        assert len(keys.rows) == 2

    def test_landed_user_row_is_not_appended_twice(self, sheets_client):
        """If the user row landed before the error, the retry skips it."""
        users = FlakyWorksheet(USER_COLUMNS, lands=True)
        sheets_client.get_users_sheet.return_value = users
        storage = GoogleSheetsUserStorage(sheets_client)
        user = UserAccount(username="alice", password_hash="$2b$04$x")
        material = MasterKeyMaterial(wrapped_master_key="a:b:c", salt="c2FsdA==")

        async def scenario():
            await storage.create_user(user, material)
            return await storage.count_users(), await storage.get_key_material(user.id)

        count, stored = asyncio.run(scenario())
        assert count == 1
        assert len(users.rows) == 2
        assert stored is not None

    def test_audit_events_by_correlation_id(self, sheets_client):
        """Audit rows read back and filter by correlation id."""
        storage = GoogleSheetsAuditStorage(sheets_client)
        correlation_id = uuid4()

        async def scenario():
            await storage.append_event(AuditEventBuilder.login_failed("alice", correlation_id))
            await storage.append_event(AuditEventBuilder.login_failed("bob"))
            return await storage.get_events_by_correlation_id(correlation_id)

        events = asyncio.run(scenario())
        assert len(events) == 1
        assert events[0].details == {"username": "alice"}


class TestInMemoryAuditStorage:
    """Tests for the in-memory audit store."""

    def test_recent_events_newest_first(self):
        """get_recent_events honours the limit."""
        storage = InMemoryAuditStorage()

        async def scenario():
            for name in ("a", "b", "c"):
                await storage.append_event(AuditEventBuilder.login_failed(name))
            return await storage.get_recent_events(limit=2)

        assert len(asyncio.run(scenario())) == 2
        assert len(storage.events) == 3


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
