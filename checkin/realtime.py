"""
Change notifications for database tables.

Supports an in-memory fan-out for tests/local runs and a Redis pub/sub
implementation so every worker process sees writes made by the others.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Protocol

import redis
from redis import exceptions as redis_exceptions

from checkin.types import Table

logger = logging.getLogger(__name__)


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class ChangeEvent:
    table: Table
    type: ChangeType
    record: dict = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(
            {"table": self.table.value, "type": self.type.value, "record": self.record},
            default=str,
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> "ChangeEvent":
        payload = json.loads(raw)
        return cls(
            table=Table(payload["table"]),
            type=ChangeType(payload["type"]),
            record=payload.get("record") or {},
        )


ChangeHandler = Callable[[ChangeEvent], None]


class Subscription(Protocol):
    def unsubscribe(self) -> None:
        ...


class ChangeFeed(Protocol):
    """Publishes table changes and delivers them to subscribers."""

    def publish(self, event: ChangeEvent) -> None:
        ...

    def subscribe(self, table: Table, handler: ChangeHandler) -> Subscription:
        ...


def _deliver(handler: ChangeHandler, event: ChangeEvent) -> None:
    try:
        handler(event)
    except Exception:
        logger.exception("Change handler failed for table %s", event.table.value)


@dataclass
class InMemorySubscription:
    feed: "InMemoryChangeFeed"
    table: Table
    handler: ChangeHandler

    def unsubscribe(self) -> None:
        handlers = self.feed.handlers.get(self.table, [])
        if self.handler in handlers:
            handlers.remove(self.handler)


@dataclass
class InMemoryChangeFeed:
    """Delivers events synchronously to handlers in this process."""

    handlers: Dict[Table, List[ChangeHandler]] = field(default_factory=dict)

    def publish(self, event: ChangeEvent) -> None:
        for handler in list(self.handlers.get(event.table, [])):
            _deliver(handler, event)

    def subscribe(self, table: Table, handler: ChangeHandler) -> InMemorySubscription:
        self.handlers.setdefault(table, []).append(handler)
        return InMemorySubscription(feed=self, table=table, handler=handler)


@dataclass
class RedisSubscription:
    pubsub: Any
    thread: Any

    def unsubscribe(self) -> None:
        self.thread.stop()
        self.pubsub.close()


@dataclass
class RedisChangeFeed:
    """Redis pub/sub feed with one channel per table."""

    url: str
    channel_prefix: str = "checkin:changes"
    poll_interval: float = 0.5

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def channel(self, table: Table) -> str:
        return f"{self.channel_prefix}:{table.value}"

    def publish(self, event: ChangeEvent) -> None:
        try:
            self.client.publish(self.channel(event.table), event.to_json())
        except redis_exceptions.RedisError as exc:
            # The write already happened; peers will catch up when their
            # cache entries expire.
            logger.warning(
                "Could not publish %s change for %s: %s",
                event.type.value,
                event.table.value,
                exc,
            )
            self.client = redis.Redis.from_url(self.url)

    def subscribe(self, table: Table, handler: ChangeHandler) -> RedisSubscription:
        pubsub = self.client.pubsub(ignore_subscribe_messages=True)

        def on_message(message: dict) -> None:
            try:
                event = ChangeEvent.from_json(message["data"])
            except (KeyError, ValueError):
                logger.warning("Ignoring malformed change message on %s", table.value)
                return
            _deliver(handler, event)

        pubsub.subscribe(**{self.channel(table): on_message})
        thread = pubsub.run_in_thread(sleep_time=self.poll_interval, daemon=True)
        return RedisSubscription(pubsub=pubsub, thread=thread)
