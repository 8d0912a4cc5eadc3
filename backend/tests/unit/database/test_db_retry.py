"""Tests for the retry wrapper and session dependency in booking_engine.database."""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from booking_engine import database
from booking_engine.core.exceptions import TransientException
from booking_engine.database import get_db, is_retryable_db_error, with_db_retry
from booking_engine.database.session_utils import get_dialect_name, supports_row_locks


def _operational(message: str) -> OperationalError:
    return OperationalError("UPDATE", {}, Exception(message))


class TestIsRetryable:
    @pytest.mark.parametrize(
        "message",
        [
            "database is locked",
            "ERROR: deadlock detected",
            "could not serialize access due to concurrent update",
            "SSL connection has been closed unexpectedly",
        ],
    )
    def test_contention_messages(self, message):
        assert is_retryable_db_error(_operational(message)) is True

    def test_pool_exhaustion(self):
        assert is_retryable_db_error(Exception("QueuePool limit of size 5 overflow 10 reached")) is True

    def test_other_errors(self):
        assert is_retryable_db_error(_operational("no such table: sessions")) is False


class TestWithDbRetry:
    def test_returns_first_success(self):
        func = MagicMock(return_value="booked")
        assert with_db_retry("book_session", func) == "booked"
        func.assert_called_once()

    def test_retries_transient_then_succeeds(self):
        func = MagicMock(side_effect=[TransientException("busy"), _operational("database is locked"), "booked"])

        with patch("booking_engine.database.time.sleep") as sleep:
            assert with_db_retry("book_session", func, max_attempts=3) == "booked"

        assert func.call_count == 3
        assert sleep.call_count == 2

    def test_gives_up_at_limit(self):
        func = MagicMock(side_effect=TransientException("busy"))

        with patch("booking_engine.database.time.sleep"):
            with pytest.raises(TransientException):
                with_db_retry("cancel_session", func, max_attempts=2)

        assert func.call_count == 2

    def test_uses_configured_attempts(self, monkeypatch):
        monkeypatch.setattr(database.settings, "db_retry_attempts", 4)
        func = MagicMock(side_effect=TransientException("busy"))

        with patch("booking_engine.database.time.sleep"):
            with pytest.raises(TransientException):
                with_db_retry("reschedule_session", func)

        assert func.call_count == 4

    def test_non_retryable_error_is_raised_immediately(self):
        func = MagicMock(side_effect=_operational("no such column: start_at"))

        with patch("booking_engine.database.time.sleep") as sleep:
            with pytest.raises(OperationalError):
                with_db_retry("book_session", func)

        func.assert_called_once()
        sleep.assert_not_called()

    def test_domain_errors_are_not_retried(self):
        func = MagicMock(side_effect=ValueError("overlap"))

        with pytest.raises(ValueError):
            with_db_retry("book_session", func)

        func.assert_called_once()

    def test_backoff_grows(self):
        assert database._retry_delay(1) < 0.2
        assert database._retry_delay(3) >= 0.4


class TestGetDb:
    def test_commits_and_closes(self):
        session = MagicMock()
        with patch("booking_engine.database.SessionLocal", return_value=session):
            gen = get_db()
            assert next(gen) is session
            with pytest.raises(StopIteration):
                next(gen)

        session.commit.assert_called_once()
        session.close.assert_called_once()

    def test_rolls_back_on_error(self):
        session = MagicMock()
        with patch("booking_engine.database.SessionLocal", return_value=session):
            gen = get_db()
            next(gen)
            with pytest.raises(RuntimeError):
                gen.throw(RuntimeError("request failed"))

        session.rollback.assert_called_once()
        session.commit.assert_not_called()
        session.close.assert_called_once()


class TestSessionUtils:
    def test_sqlite_has_no_row_locks(self):
        session = MagicMock()
        session.get_bind.return_value.dialect.name = "sqlite"

        assert get_dialect_name(session) == "sqlite"
        assert supports_row_locks(session) is False

    def test_postgres_has_row_locks(self):
        session = MagicMock()
        session.get_bind.return_value.dialect.name = "postgresql"

        assert supports_row_locks(session) is True

    def test_unresolvable_bind_falls_back_to_default(self):
        session = MagicMock()
        session.get_bind.side_effect = RuntimeError("unbound")

        with patch("booking_engine.database.session_utils.inspect", side_effect=RuntimeError("no")):
            assert get_dialect_name(session, default="postgresql") == "postgresql"
