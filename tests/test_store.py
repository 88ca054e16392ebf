"""
Agora Forum - Transactional Store Tests
=======================================

Tests for the retry policy around units of work.
"""

import pytest
from asyncpg.exceptions import DeadlockDetectedError, SerializationError
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from agora.core.database import Store, is_transient
from agora.core.errors import TransientStoreError, ValidationError
from agora.models import NotificationKind
from agora.modules.notifications import NotificationDraft


def locked() -> OperationalError:
    return OperationalError("BEGIN IMMEDIATE", {}, Exception("database is locked"))


class DriverError(Exception):
    """Driver error as re-raised by the asyncpg dialect."""


def rolled_back(cause: Exception) -> DBAPIError:
    error = DriverError(f"{type(cause).__name__}: {cause}")
    error.__cause__ = cause
    return DBAPIError("UPDATE forum_threads", {}, error)


def deadlock() -> DBAPIError:
    return rolled_back(DeadlockDetectedError("deadlock detected"))


class FlakyWork:
    """Unit of work that fails the first ``failures`` attempts."""

    def __init__(self, failures: int, error=locked) -> None:
        self.failures = failures
        self.error = error
        self.attempts = 0

    async def __call__(self, session: AsyncSession) -> str:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.error()
        return "done"


class TestIsTransient:
    """Tests for transient error classification."""

    def test_operational_error(self):
        assert is_transient(locked())

    def test_invalidated_connection(self):
        error = DBAPIError("SELECT 1", {}, Exception("gone"), connection_invalidated=True)
        assert is_transient(error)

    def test_integrity_error(self):
        assert not is_transient(IntegrityError("INSERT", {}, Exception("duplicate")))

    def test_deadlock(self):
        assert is_transient(deadlock())

    def test_serialization_failure(self):
        assert is_transient(rolled_back(SerializationError("could not serialize access")))

    def test_sqlstate_on_driver_error(self):
        """Test the code copied onto the dialect error is honoured."""
        error = DriverError("deadlock detected")
        error.sqlstate = "40P01"
        assert is_transient(DBAPIError("UPDATE", {}, error))

    @pytest.mark.parametrize("sqlstate", ["23505", "42P01", None])
    def test_other_sqlstates(self, sqlstate):
        error = DriverError("failed")
        error.sqlstate = sqlstate
        assert not is_transient(DBAPIError("UPDATE", {}, error))


class TestRetry:
    """Tests for bounded retries."""

    async def test_recovers_after_transient_failures(self, store):
        """Test work succeeds once the transient failures stop."""
        work = FlakyWork(failures=2)

        assert await store.run(work) == "done"
        assert work.attempts == 3

    async def test_recovers_after_deadlock(self, store):
        """Test a transaction chosen as deadlock victim is re-run."""
        work = FlakyWork(failures=1, error=deadlock)

        assert await store.run(work, label="create_post") == "done"
        assert work.attempts == 2

    async def test_persistent_deadlock(self, store):
        work = FlakyWork(failures=10, error=deadlock)

        with pytest.raises(TransientStoreError) as exc_info:
            await store.run(work)
        assert exc_info.value.commit_uncertain is False

    async def test_gives_up(self, store):
        """Test exhausted retries surface as TransientStoreError."""
        work = FlakyWork(failures=10)

        with pytest.raises(TransientStoreError) as exc_info:
            await store.run(work, label="flaky")

        assert work.attempts == 3
        assert exc_info.value.commit_uncertain is False
        assert isinstance(exc_info.value.__cause__, OperationalError)

    async def test_attempts_configurable(self, store):
        """Test the retry budget follows the store configuration."""
        single = Store(store.engine, retry_attempts=1, retry_base_delay=0.0)
        work = FlakyWork(failures=1)

        with pytest.raises(TransientStoreError):
            await single.run(work)
        assert work.attempts == 1

    async def test_non_transient_not_retried(self, store):
        """Test constraint errors propagate untouched on the first attempt."""
        work = FlakyWork(
            failures=1, error=lambda: IntegrityError("INSERT", {}, Exception("duplicate"))
        )

        with pytest.raises(IntegrityError):
            await store.run(work)
        assert work.attempts == 1

    async def test_forum_errors_not_retried(self, store):
        """Test forum errors raised by the work are returned directly."""
        work = FlakyWork(failures=1, error=lambda: ValidationError("Title cannot be empty"))

        with pytest.raises(ValidationError):
            await store.run(work)
        assert work.attempts == 1


class TestCommitFailure:
    """Tests for failures during commit."""

    async def test_commit_failure_not_retried(self, store, notifications, alice, monkeypatch):
        """Test a failed commit is surfaced as uncertain and never re-run."""
        attempts = 0

        async def work(session):
            nonlocal attempts
            attempts += 1
            await notifications.emit_in(
                session, NotificationDraft(recipient_id=alice.id, kind=NotificationKind.SYSTEM)
            )

        async def failing_commit(self):
            raise locked()

        with monkeypatch.context() as patch:
            patch.setattr(AsyncSession, "commit", failing_commit)
            with pytest.raises(TransientStoreError) as exc_info:
                await store.run(work, label="emit")

        assert attempts == 1
        assert exc_info.value.commit_uncertain is True
        assert await notifications.unread_count(alice.id) == 0
