"""Tests for the SQLite lock retry decorator."""

import pytest
from sqlalchemy.exc import OperationalError

from tracksync.infrastructure.persistence.retry import is_lock_error, with_db_retry


def _locked() -> OperationalError:
    return OperationalError("INSERT INTO track_file_mappings", {}, Exception("database is locked"))


class TestIsLockError:
    """Test lock error detection."""

    def test_locked(self) -> None:
        """'database is locked' is retryable."""
        assert is_lock_error(_locked()) is True

    def test_other_operational_error(self) -> None:
        """Missing tables are not."""
        error = OperationalError("SELECT 1", {}, Exception("no such table: track_file_mappings"))
        assert is_lock_error(error) is False

    def test_non_sqlalchemy_error(self) -> None:
        """Plain exceptions are not."""
        assert is_lock_error(ValueError("locked")) is False


class TestWithDbRetry:
    """Test with_db_retry()."""

    async def test_retries_until_success(self) -> None:
        """Lock errors are retried."""
        calls = 0

        @with_db_retry(max_attempts=3, initial_delay=0.0)
        async def write() -> str:
            nonlocal calls
            calls += 1
            if calls < 3:
                raise _locked()
            return "ok"

        assert await write() == "ok"
        assert calls == 3

    async def test_gives_up_after_max_attempts(self) -> None:
        """The last lock error propagates."""
        calls = 0

        @with_db_retry(max_attempts=2, initial_delay=0.0)
        async def write() -> None:
            nonlocal calls
            calls += 1
            raise _locked()

        with pytest.raises(OperationalError):
            await write()
        assert calls == 2

    async def test_non_lock_error_fails_fast(self) -> None:
        """Other driver errors are not retried."""
        calls = 0

        @with_db_retry(max_attempts=3, initial_delay=0.0)
        async def write() -> None:
            nonlocal calls
            calls += 1
            raise OperationalError("SELECT 1", {}, Exception("no such table"))

        with pytest.raises(OperationalError):
            await write()
        assert calls == 1
