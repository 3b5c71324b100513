"""
UnitOfWork and TransactionRunner: atomicity, error translation, bounded
retry and post-commit notification.
"""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from market_config.schema import RetryConfig
from market_kernel.exceptions import (
    ConcurrencyConflictError,
    PersistenceFailureError,
    ValidationError,
)
from market_kernel.models.user import User
from market_services.notifications import (
    NotificationEmitter,
    NotificationEvent,
    RecordingNotificationSink,
)
from market_services.unit_of_work import TransactionRunner, translate_storage_error


class _PgError(Exception):
    def __init__(self, message, pgcode):
        super().__init__(message)
        self.pgcode = pgcode


def user_count(session_factory) -> int:
    with session_factory() as s:
        return s.execute(select(func.count(User.id))).scalar_one()


@pytest.fixture
def sink():
    return RecordingNotificationSink()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def runner(session_factory, sink, sleeps):
    return TransactionRunner(
        session_factory,
        NotificationEmitter(sink=sink),
        RetryConfig(max_attempts=3, backoff_seconds=0.01, backoff_multiplier=2.0),
        sleep=sleeps.append,
    )


def add_user(uow, name="Temp"):
    uow.session.add(User(name=name, role="buyer", status="active"))
    uow.session.flush()


class TestTranslation:

    def test_sqlite_lock_is_a_conflict(self):
        exc = OperationalError("UPDATE wallets", {}, Exception("database is locked"))
        error = translate_storage_error(exc, "wallet.deposit")
        assert isinstance(error, ConcurrencyConflictError)
        assert error.operation == "wallet.deposit"

    @pytest.mark.parametrize("pgcode", ["40001", "40P01", "55P03"])
    def test_postgres_conflict_codes(self, pgcode):
        exc = OperationalError("UPDATE", {}, _PgError("conflict", pgcode))
        assert isinstance(translate_storage_error(exc, "op"), ConcurrencyConflictError)

    def test_integrity_error_is_a_persistence_failure(self):
        exc = IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed"))
        error = translate_storage_error(exc, "order.place")
        assert isinstance(error, PersistenceFailureError)
        assert "NOT NULL" in error.detail


class TestAtomicity:

    def test_commit_on_success(self, runner, session_factory):
        runner.run("test.add", add_user)
        assert user_count(session_factory) == 1

    def test_business_error_rolls_back_everything(self, runner, session_factory, sink):
        def work(uow):
            add_user(uow)
            uow.add_event(NotificationEvent("x", uow.session.query(User).first().id, "t", "m"))
            raise ValidationError("amount", "too small")

        with pytest.raises(ValidationError):
            runner.run("test.fail", work)

        assert user_count(session_factory) == 0
        assert sink.notifications == []

    def test_events_published_after_commit(self, runner, sink):
        def work(uow):
            add_user(uow)
            user = uow.session.query(User).one()
            uow.add_event(NotificationEvent("hello", user.id, "Hi", "there"))
            assert sink.notifications == []
            return user.id

        user_id = runner.run("test.notify", work)
        assert sink.notifications == [(user_id, "Hi", "there", "info")]

    def test_constraint_violation_is_persistence_failure(self, runner, captured_logs):
        def work(uow):
            uow.session.add(User(name=None, role="buyer", status="active"))

        with pytest.raises(PersistenceFailureError):
            runner.run("test.broken", work)
        assert any(
            r["message"] == "persistence_failure" and r["level"] == "ERROR"
            for r in captured_logs()
        )


class TestRetry:

    def test_conflict_is_retried_then_succeeds(self, runner, session_factory, sleeps):
        attempts = []

        def work(uow):
            attempts.append(1)
            if len(attempts) < 3:
                raise ConcurrencyConflictError("test.retry", "lost race")
            add_user(uow)
            return "done"

        assert runner.run("test.retry", work) == "done"
        assert len(attempts) == 3
        assert sleeps == pytest.approx([0.01, 0.02])
        assert user_count(session_factory) == 1

    def test_retries_are_bounded(self, runner, sleeps):
        def work(uow):
            raise ConcurrencyConflictError("test.retry", "lost race")

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            runner.run("test.retry", work)
        assert exc_info.value.retries_exhausted
        assert len(sleeps) == 2

    def test_persistence_failure_is_not_retried(self, runner, sleeps):
        calls = []

        def work(uow):
            calls.append(1)
            raise PersistenceFailureError("test.once", "disk full")

        with pytest.raises(PersistenceFailureError):
            runner.run("test.once", work)
        assert calls == [1]
        assert sleeps == []

    def test_attempts_are_isolated(self, runner, session_factory):
        attempts = []

        def work(uow):
            add_user(uow, name=f"attempt-{len(attempts)}")
            attempts.append(1)
            if len(attempts) == 1:
                raise ConcurrencyConflictError("test.retry", "lost race")

        runner.run("test.retry", work)
        assert user_count(session_factory) == 1


class TestLogContext:

    def test_operation_and_actor_are_bound(self, runner, captured_logs):
        from market_kernel.logging_config import get_logger

        log = get_logger("tests.unit_of_work")
        runner.run("test.ctx", lambda uow: log.info("inside"), actor_id="actor-1")

        [record] = [r for r in captured_logs() if r["message"] == "inside"]
        assert record["operation"] == "test.ctx"
        assert record["actor_id"] == "actor-1"
