from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog

from .base import ChangeCallback, ChangeEvent, ChangeFeed, Subscription

log = structlog.get_logger()


@dataclass
class _Channel:
    subscription: Subscription
    table: str
    callback: ChangeCallback
    column: Optional[str]
    value: Any

    def matches(self, event: ChangeEvent) -> bool:
        if event.table != self.table:
            return False
        if self.column is None:
            return True
        for row in (event.new, event.old):
            if row is not None and row.get(self.column) == self.value:
                return True
        return False


class LocalChangeFeed(ChangeFeed):
    """
    In-process change feed.

    publish() awaits every matching callback concurrently. A failing callback
    is logged and does not affect delivery to the others or the publisher.
    A subscription cancelled while an event is in flight receives nothing more.
    """

    def __init__(self) -> None:
        self._channels: Dict[int, _Channel] = {}

    @property
    def active_count(self) -> int:
        return len(self._channels)

    def _remove(self, subscription: Subscription) -> None:
        self._channels.pop(subscription.id, None)
        log.debug("realtime.unsubscribed", subscription=subscription.id, topic=subscription.topic)

    async def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        column: Optional[str] = None,
        value: Any = None,
    ) -> Subscription:
        topic = f"{table}:{column}=eq.{value}" if column else table
        subscription = Subscription(self._remove, topic)
        self._channels[subscription.id] = _Channel(subscription, table, callback, column, value)
        log.debug("realtime.subscribed", subscription=subscription.id, topic=topic)
        return subscription

    async def _deliver(self, channel: _Channel, event: ChangeEvent) -> None:
        if not channel.subscription.active:
            return
        await channel.callback(event)

    async def publish(self, event: ChangeEvent) -> None:
        targets: List[_Channel] = [c for c in list(self._channels.values()) if c.matches(event)]
        if not targets:
            return
        results = await asyncio.gather(
            *(self._deliver(c, event) for c in targets), return_exceptions=True
        )
        for channel, result in zip(targets, results):
            if isinstance(result, BaseException):
                log.error(
                    "realtime.callback_failed",
                    subscription=channel.subscription.id,
                    table=event.table,
                    event_type=event.event_type.value,
                    error=repr(result),
                )
