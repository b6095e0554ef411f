"""
Change-feed listener and toast queue.

A session subscribes to its owner's todo changes once. Each change re-derives
the notification set; inserts and completions also queue a toast, which the
client collects by polling or over the SSE stream.
"""
from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Deque, List, Optional

import structlog

from .backend import ChangeEvent, ChangeFeed, ChangeType, Subscription
from .backend.tables import TODOS
from .errors import BackendError
from .notifications import NotificationCenter
from .utils import utc_now

log = structlog.get_logger()


class ToastKind(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


@dataclass(frozen=True)
class Toast:
    kind: ToastKind
    message: str
    created_at: datetime = field(default_factory=utc_now)


class ToastQueue:
    """
    Bounded queue of transient toasts for one session.

    Consumers either drain() what is pending or wait() for the next batch.
    Pushing to a closed queue is a no-op.
    """

    def __init__(self, maxlen: int = 50) -> None:
        self._items: Deque[Toast] = deque(maxlen=maxlen)
        self._changed = asyncio.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self._items)

    def push(self, kind: ToastKind, message: str) -> None:
        if self._closed:
            return
        self._items.append(Toast(kind=kind, message=message))
        self._changed.set()

    def drain(self) -> List[Toast]:
        items = list(self._items)
        self._items.clear()
        if not self._closed:
            self._changed.clear()
        return items

    async def wait(self, timeout: float) -> List[Toast]:
        if not self._items and not self._closed:
            try:
                await asyncio.wait_for(self._changed.wait(), timeout)
            except asyncio.TimeoutError:
                pass
        return self.drain()

    def close(self) -> None:
        self._closed = True
        self._changed.set()


class ChangeFeedListener:
    """
    Standing subscription to the owner's todo changes.

    Every event triggers a full notification refresh; inserts and completions
    also produce a toast. At most one subscription is active per listener.
    When is_live reports the owning session has ended, the event is dropped
    and the subscription cancelled.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        center: NotificationCenter,
        toasts: ToastQueue,
        owner_id: str,
        *,
        is_live: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> None:
        self._feed = feed
        self._center = center
        self._toasts = toasts
        self.owner_id = owner_id
        self._is_live = is_live
        self._subscription: Optional[Subscription] = None

    @property
    def active(self) -> bool:
        return self._subscription is not None and self._subscription.active

    async def start(self) -> None:
        if self._subscription is not None:
            await self._subscription.unsubscribe()
            self._subscription = None
        self._subscription = await self._feed.subscribe(
            TODOS, self._on_change, column="user_id", value=self.owner_id
        )
        log.info("listener.subscribed", owner_id=self.owner_id, subscription=self._subscription.id)

    async def stop(self) -> None:
        if self._subscription is None:
            return
        subscription, self._subscription = self._subscription, None
        await subscription.unsubscribe()
        log.info("listener.unsubscribed", owner_id=self.owner_id, subscription=subscription.id)

    async def _on_change(self, event: ChangeEvent) -> None:
        if not self.active:
            return
        if self._is_live is not None and not await self._is_live():
            await self.stop()
            return

        if event.event_type == ChangeType.INSERT and event.new:
            self._toasts.push(ToastKind.SUCCESS, f"New task created: {event.new.get('title')}")
        elif event.event_type == ChangeType.UPDATE and event.new and event.new.get("completed"):
            self._toasts.push(ToastKind.SUCCESS, f"Task completed: {event.new.get('title')}")

        try:
            await self._center.refresh()
        except BackendError as exc:
            log.warning("listener.refresh_failed", owner_id=self.owner_id, error=exc.message)
            self._toasts.push(ToastKind.ERROR, exc.message)
