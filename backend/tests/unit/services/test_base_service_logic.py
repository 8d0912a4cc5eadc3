# backend/tests/unit/services/test_base_service_logic.py
"""
Unit tests for BaseService.

The database session is mocked so only the transaction and metrics
plumbing is exercised.
"""

from itertools import chain, repeat
from unittest.mock import Mock, patch

import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from booking_engine.core.exceptions import ServiceException, TransientException
from booking_engine.services.base import BaseService


class CalendarService(BaseService):
    @BaseService.measure_operation("resolve")
    def resolve(self, fail: bool = False):
        if fail:
            raise ValueError("bad range")
        return "resolved"


@pytest.fixture
def mock_db():
    return Mock(spec=Session)


@pytest.fixture
def service(mock_db):
    service = CalendarService(mock_db)
    service.reset_metrics()
    return service


class TestInitialization:
    def test_keeps_session(self, mock_db):
        service = BaseService(mock_db)
        assert service.db is mock_db

    def test_logger_uses_class_name(self, service):
        assert service.logger.name == "CalendarService"


class TestTransaction:
    def test_commits_on_success(self, service, mock_db):
        with service.transaction() as session:
            assert session is mock_db

        mock_db.commit.assert_called_once()
        mock_db.rollback.assert_not_called()

    def test_sqlalchemy_error_becomes_service_exception(self, service, mock_db):
        mock_db.commit.side_effect = SQLAlchemyError("constraint failed")

        with pytest.raises(ServiceException) as exc:
            with service.transaction():
                pass

        assert "Database operation failed" in str(exc.value)
        mock_db.rollback.assert_called_once()

    def test_lock_contention_is_transient(self, service, mock_db):
        mock_db.commit.side_effect = OperationalError("COMMIT", {}, Exception("database is locked"))

        with pytest.raises(TransientException) as exc:
            with service.transaction():
                pass

        assert exc.value.code == "TRANSIENT_DB_ERROR"
        mock_db.rollback.assert_called_once()

    def test_other_operational_error_is_not_transient(self, service, mock_db):
        mock_db.commit.side_effect = OperationalError("COMMIT", {}, Exception("no such table: sessions"))

        with pytest.raises(ServiceException) as exc:
            with service.transaction():
                pass

        assert not isinstance(exc.value, TransientException)

    def test_domain_error_rolls_back_and_propagates(self, service, mock_db):
        with pytest.raises(ValueError):
            with service.transaction():
                raise ValueError("overlap")

        mock_db.commit.assert_not_called()
        mock_db.rollback.assert_called_once()


class TestMeasureOperation:
    def test_wrapper_is_marked(self):
        assert CalendarService.resolve._is_measured is True
        assert CalendarService.resolve._operation_name == "resolve"

    def test_records_success_and_failure(self, service):
        assert service.resolve() == "resolved"
        with pytest.raises(ValueError):
            service.resolve(fail=True)

        metrics = service.get_metrics()["resolve"]
        assert metrics["count"] == 2
        assert metrics["success_count"] == 1
        assert metrics["failure_count"] == 1
        assert metrics["success_rate"] == 0.5
        assert metrics["min_time"] <= metrics["avg_time"] <= metrics["max_time"]

    def test_forwards_to_prometheus(self, service):
        with patch("booking_engine.services.base.prometheus_metrics") as prom:
            with pytest.raises(ValueError):
                service.resolve(fail=True)

        kwargs = prom.record_service_operation.call_args.kwargs
        assert kwargs["service"] == "CalendarService"
        assert kwargs["operation"] == "resolve"
        assert kwargs["status"] == "error"
        assert kwargs["error_type"] == "ValueError"

    def test_prometheus_failure_does_not_break_call(self, service):
        with patch("booking_engine.services.base.prometheus_metrics") as prom:
            prom.record_service_operation.side_effect = RuntimeError("registry gone")
            assert service.resolve() == "resolved"

    def test_slow_operation_is_logged(self, service):
        with patch("booking_engine.services.base.time.time", side_effect=chain([0.0], repeat(2.5))):
            with patch.object(service, "logger") as logger:
                service.resolve()

        assert "Slow operation detected: resolve" in logger.warning.call_args.args[0]

    def test_reset_clears_metrics(self, service):
        service.resolve()
        service.reset_metrics()
        assert service.get_metrics() == {}


class TestLogOperation:
    def test_passes_context_as_extra(self, service):
        with patch.object(service, "logger") as logger:
            service.log_operation("book_session", provider_id="p1")

        logger.info.assert_called_once_with(
            "Operation: book_session",
            extra={"operation": "book_session", "provider_id": "p1"},
        )
