"""
End-to-end flow tests: register, log in, write encrypted, read decrypted.

Everything runs on in-memory storage.
"""

import asyncio
import os
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

import pytest

from expense_vault.audit import AuditLogger
from expense_vault.config import AppSettings, AuthSettings, EncryptionSettings
from expense_vault.crypto import INVALID_TITLE, envelope, looks_like_envelope
from expense_vault.models.audit import AuditEventType
from expense_vault.models.expense import ExpenseInput
from expense_vault.orchestrator import (
    ExpenseClient,
    ExpenseService,
    ExpenseValidationError,
    create_app_components,
)
from expense_vault.services.auth import AuthService, InvalidCredentialsError
from expense_vault.services.storage import (
    InMemoryAuditStorage,
    InMemoryExpenseStorage,
    InMemoryUserStorage,
    NotFoundError,
    StorageError,
)
from expense_vault.validation import ExpenseValidator


class Harness:
    """Wires the flows together over in-memory storage."""

    def __init__(self, encryption: bool = True):
        self.users = InMemoryUserStorage()
        self.expenses = InMemoryExpenseStorage()
        self.audit = InMemoryAuditStorage()
        audit_logger = AuditLogger(self.audit)
        self.auth = AuthService(
            self.users,
            self.expenses,
            audit_logger=audit_logger,
            auth_settings=AuthSettings(bcrypt_rounds=4, invite_code=None),
            encryption_settings=EncryptionSettings(enabled=encryption),
        )
        self.service = ExpenseService(self.expenses, audit_logger=audit_logger)
        self.client = ExpenseClient(
            self.auth,
            self.service,
            validator=ExpenseValidator(AppSettings()),
            audit_logger=audit_logger,
        )

    def event_types(self):
        return [event.event_type for event in self.audit.events]

    async def signed_in(self, username="alice", password="Passw0rd!"):
        await self.client.register(username, password)
        return await self.client.login(username, password)


def _lunch(**overrides) -> ExpenseInput:
    values = {
        "title": "咖啡",
        "amount": Decimal("18.00"),
        "category": "Food",
        "date": datetime(2024, 6, 1, 9, 30),
    }
    values.update(overrides)
    return ExpenseInput(**values)


class TestEncryptedFlow:
    """The full register → login → write → read scenario."""

    def test_server_only_sees_ciphertext(self):
        """Stored title/category are envelopes; the client reads plaintext."""
        harness = Harness()

        async def scenario():
            session = await harness.signed_in()
            added = await harness.client.add_expense(session, _lunch(note="morning"))
            stored = await harness.expenses.get_expense(session.user_id, added.id)
            listed = await harness.client.list_expenses(session)
            return added, stored, listed

        added, stored, listed = asyncio.run(scenario())
        assert added.title == "咖啡"
        assert looks_like_envelope(stored.title)
        assert looks_like_envelope(stored.category)
        assert looks_like_envelope(stored.note)
        assert "咖啡" not in stored.title
        assert stored.amount == Decimal("18.00")
        assert [(e.title, e.category, e.note) for e in listed] == [("咖啡", "Food", "morning")]

    def test_relogin_reads_old_data(self):
        """A new session unwraps the same master key."""
        harness = Harness()

        async def scenario():
            session = await harness.signed_in()
            await harness.client.add_expense(session, _lunch())
            await harness.client.logout(session)
            again = await harness.client.login("alice", "Passw0rd!")
            return session, await harness.client.list_expenses(again)

        old_session, listed = asyncio.run(scenario())
        assert listed[0].title == "咖啡"
        assert not old_session.crypto.is_open
        assert AuditEventType.SESSION_CLOSED in harness.event_types()

    def test_wrong_password(self):
        """A wrong password never opens a session."""
        harness = Harness()

        async def scenario():
            await harness.client.register("alice", "Passw0rd!")
            await harness.client.login("alice", "Passw0rd?")

        with pytest.raises(InvalidCredentialsError):
            asyncio.run(scenario())

    def test_unwrap_failure_looks_like_bad_password(self):
        """Corrupted key material surfaces as invalid credentials."""
        harness = Harness()

        async def scenario():
            user = await harness.client.register("alice", "Passw0rd!")
            material = await harness.users.get_key_material(user.id)
            harness.users._key_material[user.id] = material.model_copy(
                update={"wrapped_master_key": envelope.encrypt("garbage", os.urandom(32))}
            )
            await harness.client.login("alice", "Passw0rd!")

        with pytest.raises(InvalidCredentialsError) as exc_info:
            asyncio.run(scenario())
        assert str(exc_info.value) == "Incorrect username or password"
        assert AuditEventType.MASTER_KEY_UNWRAP_FAILED in harness.event_types()

    def test_corrupted_record_is_contained(self):
        """One undecryptable row shows a placeholder; the rest decrypt."""
        harness = Harness()

        async def scenario():
            session = await harness.signed_in()
            good = await harness.client.add_expense(session, _lunch())
            bad = await harness.client.add_expense(session, _lunch(title="Taxi"))
            stored = await harness.expenses.get_expense(session.user_id, bad.id)
            await harness.expenses.update_expense(stored.model_copy(update={
                "title": envelope.encrypt("Taxi", os.urandom(32)),
            }))
            return good, bad, await harness.client.list_expenses(session)

        good, bad, listed = asyncio.run(scenario())
        titles = {e.id: e.title for e in listed}
        assert titles[good.id] == "咖啡"
        assert titles[bad.id] == INVALID_TITLE
        assert AuditEventType.RECORD_DECRYPTION_FAILED in harness.event_types()

    def test_legacy_rows_pass_through(self):
        """Plaintext rows from before encryption was enabled still read."""
        harness = Harness()

        async def scenario():
            session = await harness.signed_in()
            await harness.service.create_expense(session.user_id, _lunch(title="Old lunch"))
            return await harness.client.list_expenses(session)

        listed = asyncio.run(scenario())
        assert listed[0].title == "Old lunch"


class TestPlaintextFlow:
    """With encryption off, fields are stored as entered."""

    def test_round_trip_without_encryption(self):
        """Nothing is encrypted and nothing needs decrypting."""
        harness = Harness(encryption=False)

        async def scenario():
            session = await harness.signed_in()
            added = await harness.client.add_expense(session, _lunch())
            stored = await harness.expenses.get_expense(session.user_id, added.id)
            return session, stored

        session, stored = asyncio.run(scenario())
        assert session.crypto.encryption is False
        assert stored.title == "咖啡"


class TestExpenseCrud:
    """Create, update, delete and import through the client."""

    def test_client_validates_before_encrypting(self):
        """Invalid plaintext never reaches the server."""
        harness = Harness()

        async def scenario():
            session = await harness.signed_in()
            try:
                await harness.client.add_expense(session, _lunch(title="", amount=Decimal("0")))
            finally:
                assert await harness.expenses.list_expenses(session.user_id) == []

        with pytest.raises(ExpenseValidationError) as exc_info:
            asyncio.run(scenario())
        assert "Title is required" in exc_info.value.issues

    def test_update_keeps_note_unless_given(self):
        """Omitting the note keeps it; an empty note clears it."""
        harness = Harness()

        async def scenario():
            session = await harness.signed_in()
            added = await harness.client.add_expense(session, _lunch(note="morning"))
            kept = await harness.client.update_expense(
                session, added.id, ExpenseInput(title="Tea", category="Food"),
            )
            cleared = await harness.client.update_expense(
                session, added.id, ExpenseInput(title="Tea", category="Food", note=""),
            )
            return kept, cleared

        kept, cleared = asyncio.run(scenario())
        assert kept.title == "Tea"
        assert kept.amount == Decimal("0")
        assert kept.note == "morning"
        assert kept.date == datetime(2024, 6, 1, 9, 30)
        assert cleared.note is None

    def test_cannot_touch_other_users_expenses(self):
        """Updates and deletes are scoped to the owner."""
        harness = Harness()

        async def scenario():
            alice = await harness.signed_in("alice")
            bob = await harness.signed_in("bob")
            added = await harness.client.add_expense(alice, _lunch())
            deleted = await harness.client.delete_expense(bob, added.id)
            bob_view = await harness.client.list_expenses(bob)
            try:
                await harness.client.update_expense(bob, added.id, _lunch(title="mine"))
            except NotFoundError:
                return deleted, bob_view, True
            return deleted, bob_view, False

        deleted, bob_view, update_refused = asyncio.run(scenario())
        assert deleted is False
        assert bob_view == []
        assert update_refused is True

    def test_delete_is_idempotent(self):
        """Deleting twice is fine."""
        harness = Harness()

        async def scenario():
            session = await harness.signed_in()
            added = await harness.client.add_expense(session, _lunch())
            return (
                await harness.client.delete_expense(session, added.id),
                await harness.client.delete_expense(session, added.id),
            )

        assert asyncio.run(scenario()) == (True, False)
        assert harness.event_types().count(AuditEventType.EXPENSE_DELETED) == 1

    def test_import_counts_skipped(self):
        """Invalid items are skipped and counted."""
        harness = Harness()

        async def scenario():
            session = await harness.signed_in()
            result = await harness.client.import_expenses(session, [
                _lunch(),
                _lunch(title="Taxi", category="Transport"),
                _lunch(category=""),
            ])
            return result, await harness.client.list_expenses(session)

        result, listed = asyncio.run(scenario())
        assert result.imported == 2
        assert result.skipped == 1
        assert {e.title for e in listed} == {"咖啡", "Taxi"}
        assert AuditEventType.EXPENSES_IMPORTED in harness.event_types()


class TestExpenseService:
    """Server-side checks that do not depend on the client."""

    def test_create_requires_amount(self):
        """A zero amount is rejected on create."""
        harness = Harness(encryption=False)
        with pytest.raises(ExpenseValidationError):
            asyncio.run(harness.service.create_expense(uuid4(), _lunch(amount=Decimal("0"))))

    def test_update_missing_expense(self):
        """Updating an unknown id is NotFound."""
        harness = Harness(encryption=False)
        with pytest.raises(NotFoundError):
            asyncio.run(harness.service.update_expense(uuid4(), uuid4(), _lunch()))

    def test_import_accepts_raw_items(self):
        """Raw dict items are parsed; incomplete ones are skipped."""
        harness = Harness(encryption=False)
        user_id = uuid4()
        result = asyncio.run(harness.service.import_expenses(user_id, [
            {"title": "Lunch", "amount": "12.50", "category": "Food"},
            {"title": "No amount", "category": "Food"},
            {"title": "Bad amount", "amount": "lots", "category": "Food"},
        ]))
        assert result.imported == 1
        assert result.skipped == 2

    def test_import_nothing(self):
        """An empty import is an error."""
        harness = Harness(encryption=False)
        with pytest.raises(ExpenseValidationError):
            asyncio.run(harness.service.import_expenses(uuid4(), []))

    def test_storage_failure_is_audited(self):
        """A failed write is audited and re-raised."""

        class BrokenStorage(InMemoryExpenseStorage):
            async def save_expense(self, expense):
                raise StorageError("sheet unavailable")

        audit = InMemoryAuditStorage()
        service = ExpenseService(BrokenStorage(), audit_logger=AuditLogger(audit))
        with pytest.raises(StorageError):
            asyncio.run(service.create_expense(uuid4(), _lunch()))
        assert [e.event_type for e in audit.events] == [AuditEventType.STORAGE_ERROR]
        assert audit.events[0].error_message == "sheet unavailable"


class TestCreateAppComponents:
    """Tests for the factory."""

    def test_in_memory_components(self):
        """use_storage=False wires everything on in-memory storage."""
        auth, service, client, sheets_client = create_app_components(
            use_storage=False,
            auth_settings=AuthSettings(bcrypt_rounds=4, invite_code=None),
            encryption_settings=EncryptionSettings(enabled=True),
            app_settings=AppSettings(),
        )
        assert sheets_client is None
        assert client.get_public_config().encryption is True

        async def scenario():
            await client.register("alice", "Passw0rd!")
            session = await client.login("alice", "Passw0rd!")
            await client.add_expense(session, _lunch())
            return await client.list_expenses(session)

        assert asyncio.run(scenario())[0].title == "咖啡"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
