"""Postgres LISTEN/NOTIFY change feed.

Rows written to any tracked table fire ``notify_table_change()`` (installed by
``db.init_db``), which publishes a small JSON payload on the configured
channel. One background listener per process fans those payloads out to
subscriptions filtered by table, event type and an optional
``column=eq.value`` filter. Views either patch their rows in place with
``patch_rows`` or simply reload.
"""
from __future__ import annotations

import asyncio
import json
import logging
import select
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List

import psycopg2
import psycopg2.extensions

from . import config

logger = logging.getLogger(__name__)

EVENT_TYPES = {"INSERT", "UPDATE", "DELETE"}
POLL_SECONDS = 1.0


@dataclass
class ChangeEvent:
    table: str
    type: str
    new: Dict[str, Any] = field(default_factory=dict)
    old: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: str) -> "ChangeEvent":
        data = json.loads(payload)
        event_type = str(data.get("type") or "").upper()
        if event_type not in EVENT_TYPES:
            raise ValueError(f"unknown change type {data.get('type')!r}")
        return cls(
            table=str(data["table"]),
            type=event_type,
            new=data.get("record") or {},
            old=data.get("old_record") or {},
        )

    @property
    def row_id(self) -> Any:
        source = self.old if self.type == "DELETE" else self.new
        return source.get("id")


def parse_filter(expression: str | None) -> tuple[str, str] | None:
    """``"proyecto_id=eq.12"`` -> ``("proyecto_id", "12")``."""
    if not expression:
        return None
    column, sep, rest = expression.partition("=")
    op, dot, value = rest.partition(".")
    if not sep or not dot or op != "eq" or not column.strip():
        raise ValueError(f"unsupported filter {expression!r}")
    return column.strip(), value


class Subscription:
    def __init__(self, table: str, callback: Callable[[ChangeEvent], None], event: str = "*", filter: str | None = None):
        self.table = table
        self.callback = callback
        self.event = event.upper()
        self.filter = parse_filter(filter)

    def matches(self, change: ChangeEvent) -> bool:
        if change.table != self.table:
            return False
        if self.event != "*" and change.type != self.event:
            return False
        if self.filter is None:
            return True
        column, value = self.filter
        if change.type == "DELETE":
            candidates = [change.old]
        elif change.type == "UPDATE":
            # A row moved out of the filter still concerns its old subscribers.
            candidates = [change.new, change.old]
        else:
            candidates = [change.new]
        return any(column in record and str(record.get(column)) == value for record in candidates)


class ChangeFeed:
    def __init__(self, channel: str | None = None, dsn_factory: Callable[[], str] = config.database_url):
        self.channel = channel or config.REALTIME_CHANNEL
        self.dsn_factory = dsn_factory
        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def subscribe(
        self,
        table: str,
        callback: Callable[[ChangeEvent], None],
        event: str = "*",
        filter: str | None = None,
    ) -> Callable[[], None]:
        subscription = Subscription(table, callback, event=event, filter=filter)
        with self._lock:
            self._subscriptions.append(subscription)

        def unsubscribe() -> None:
            with self._lock:
                if subscription in self._subscriptions:
                    self._subscriptions.remove(subscription)

        return unsubscribe

    def dispatch(self, change: ChangeEvent) -> int:
        with self._lock:
            targets = [sub for sub in self._subscriptions if sub.matches(change)]
        for subscription in targets:
            try:
                subscription.callback(change)
            except Exception:
                logger.exception("Change callback failed for %s %s", change.table, change.type)
        return len(targets)

    def handle_payload(self, payload: str) -> None:
        try:
            change = ChangeEvent.from_payload(payload)
        except (ValueError, KeyError, TypeError):
            logger.warning("Ignoring malformed change payload: %r", payload)
            return
        logger.debug("Change received: %s %s id=%s", change.table, change.type, change.row_id)
        self.dispatch(change)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="change-feed", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=POLL_SECONDS * 2)

    def _listen(self) -> None:
        conn = psycopg2.connect(self.dsn_factory())
        try:
            conn.set_isolation_level(psycopg2.extensions.ISOLATION_LEVEL_AUTOCOMMIT)
            with conn.cursor() as cursor:
                cursor.execute(f"LISTEN {self.channel}")
            logger.info("Listening for table changes on %s", self.channel)
            while not self._stop.is_set():
                if select.select([conn], [], [], POLL_SECONDS) == ([], [], []):
                    continue
                conn.poll()
                while conn.notifies:
                    notify = conn.notifies.pop(0)
                    self.handle_payload(notify.payload)
        finally:
            conn.close()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self._listen()
            except (psycopg2.Error, OSError, RuntimeError):
                logger.exception("Change feed connection lost, retrying in %ss", config.REALTIME_RECONNECT_SECONDS)
                self._stop.wait(config.REALTIME_RECONNECT_SECONDS)


_FEED: ChangeFeed | None = None
_FEED_LOCK = threading.Lock()


def get_change_feed() -> ChangeFeed:
    global _FEED
    with _FEED_LOCK:
        if _FEED is None:
            _FEED = ChangeFeed()
            if config.REALTIME_ENABLED:
                _FEED.start()
        return _FEED


def subscribe_queue(
    feed: ChangeFeed,
    table: str,
    loop: asyncio.AbstractEventLoop,
    event: str = "*",
    filter: str | None = None,
) -> tuple[asyncio.Queue, Callable[[], None]]:
    """Deliver matching changes into an asyncio queue owned by ``loop``."""
    queue: asyncio.Queue = asyncio.Queue()

    def push(change: ChangeEvent) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, change)

    return queue, feed.subscribe(table, push, event=event, filter=filter)


def subscribe_many(
    feed: ChangeFeed,
    tables: List[str],
    loop: asyncio.AbstractEventLoop,
    event: str = "*",
    filter: str | None = None,
) -> tuple[asyncio.Queue, Callable[[], None]]:
    """Like :func:`subscribe_queue`, with every table feeding one queue."""
    queue: asyncio.Queue = asyncio.Queue()

    def push(change: ChangeEvent) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, change)

    unsubscribers = [feed.subscribe(table, push, event=event, filter=filter) for table in tables]

    def unsubscribe_all() -> None:
        for unsubscribe in unsubscribers:
            unsubscribe()

    return queue, unsubscribe_all



def patch_rows(
    rows: List[Dict[str, Any]],
    change: ChangeEvent,
    refetch: Callable[[Any], Dict[str, Any] | None],
    sort_key: Callable[[Dict[str, Any]], Any] | None = None,
    reverse: bool = True,
) -> List[Dict[str, Any]]:
    """Apply one change to a local row list and return the new list.

    Inserts and updates reload the row through ``refetch`` so joined columns
    are present. A row that can no longer be read leaves the list as it was.
    """
    row_id = change.row_id
    if change.type == "DELETE":
        return [row for row in rows if row.get("id") != row_id]

    fresh = refetch(row_id)
    if fresh is None:
        return rows

    if change.type == "INSERT":
        patched = [fresh] + [row for row in rows if row.get("id") != fresh.get("id")]
    else:
        patched = [fresh if row.get("id") == fresh.get("id") else row for row in rows]

    if sort_key is not None:
        patched.sort(key=sort_key, reverse=reverse)
    return patched
