"""
market_services.notifications -- fire-and-forget notification delivery.

Responsibility:
    Carries the event records produced by committed units of work to an
    external notification sink.  Delivery happens strictly after commit
    and outside the atomic boundary: a failing sink is logged and never
    affects the committed money or stock change that produced the event.

Architecture position:
    Services -- called by UnitOfWork after a successful commit.

Usage:
    emitter = NotificationEmitter(sink=RecordingNotificationSink())
    emitter.add_listener(lambda record: queue.put(record))
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import Any, Protocol
from uuid import UUID

from market_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


@dataclass(frozen=True)
class NotificationEvent:
    """One notification produced by a committed mutation."""

    type: str
    user_id: UUID
    title: str
    message: str
    kind: str = "info"
    order_id: UUID | None = None
    amount: int | None = None

    def to_record(self) -> dict[str, Any]:
        """The ``{type, userId, orderId?, amount?}`` record for collaborators."""
        record: dict[str, Any] = {"type": self.type, "userId": str(self.user_id)}
        if self.order_id is not None:
            record["orderId"] = str(self.order_id)
        if self.amount is not None:
            record["amount"] = self.amount
        return record


class NotificationSink(Protocol):
    def notify(self, user_id: UUID, title: str, message: str, kind: str) -> None:
        ...


class LoggingNotificationSink:
    """Default sink: writes each notification to the structured log."""

    def notify(self, user_id: UUID, title: str, message: str, kind: str) -> None:
        logger.info(
            "notification_sent",
            extra={
                "user_id": str(user_id),
                "title": title,
                "body": message,
                "kind": kind,
            },
        )


class RecordingNotificationSink:
    """In-memory sink; keeps every notification it receives."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.notifications: list[tuple[UUID, str, str, str]] = []

    def notify(self, user_id: UUID, title: str, message: str, kind: str) -> None:
        with self._lock:
            self.notifications.append((user_id, title, message, kind))

    def for_user(self, user_id: UUID) -> list[tuple[UUID, str, str, str]]:
        with self._lock:
            return [n for n in self.notifications if n[0] == user_id]

    def clear(self) -> None:
        with self._lock:
            self.notifications.clear()


class NotificationEmitter:
    """
    Publishes committed events to the sink and to record listeners.

    With an executor, delivery is asynchronous and ``publish`` returns as
    soon as the events are queued.
    """

    def __init__(
        self,
        sink: NotificationSink | None = None,
        executor: Executor | None = None,
    ):
        self.sink = sink or LoggingNotificationSink()
        self._executor = executor
        self._listeners: list[Callable[[dict[str, Any]], None]] = []

    def add_listener(self, listener: Callable[[dict[str, Any]], None]) -> None:
        self._listeners.append(listener)

    def publish(self, events: Iterable[NotificationEvent]) -> None:
        for event in events:
            if self._executor is None:
                self._deliver(event)
                continue
            try:
                self._executor.submit(self._deliver, event)
            except RuntimeError:
                # Executor already shut down
                logger.warning(
                    "notification_dispatch_failed",
                    extra={"event_type": event.type, "user_id": str(event.user_id)},
                    exc_info=True,
                )

    def _deliver(self, event: NotificationEvent) -> None:
        try:
            self.sink.notify(event.user_id, event.title, event.message, event.kind)
            for listener in self._listeners:
                listener(event.to_record())
        except Exception:
            logger.warning(
                "notification_delivery_failed",
                extra={"event_type": event.type, "user_id": str(event.user_id)},
                exc_info=True,
            )
