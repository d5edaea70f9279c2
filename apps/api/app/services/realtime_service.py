"""Realtime conversation events pushed over websocket connections.

Every emission is best-effort: delivery problems are logged and never
reach the operation that triggered them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from app.core.async_utils import gather_best_effort, run_async
from app.core.config import settings
from app.core.websocket import ConnectionManager, manager, space_channel

logger = logging.getLogger(__name__)

EVENT_CONVO_NEW = "convo:new"
EVENT_CONVO_ENTRY_NEW = "convo:entry:new"
EVENT_CONVO_DELETED = "convo:deleted"
EVENT_CONVO_WORKFLOW_UPDATE = "convo:workflow:update"


@dataclass(frozen=True)
class RealtimeEvent:
    """One pending emission: either to members or to a channel."""
    event: str
    data: dict
    channel: str | None = None
    org_member_public_ids: tuple[str, ...] = field(default_factory=tuple)


class RealtimeNotifier:
    def __init__(self, connections: ConnectionManager, *, fanout_limit: int | None = None):
        self.connections = connections
        self.fanout_limit = fanout_limit or settings.REALTIME_FANOUT_LIMIT

    async def emit(self, event: str, data: dict, org_member_public_ids: Iterable[str]) -> None:
        """Send an event to every connection of each listed org member."""
        message = {"event": event, "data": data}
        for member_public_id in dict.fromkeys(org_member_public_ids):
            await self.connections.send_to_member(member_public_id, message)

    async def emit_on_channels(self, channel: str, event: str, data: dict) -> None:
        """Send an event to every connection subscribed to ``channel``."""
        await self.connections.send_to_channel(channel, {"event": event, "data": data})

    async def emit_many(self, events: Iterable[RealtimeEvent]) -> list[BaseException]:
        """Deliver events concurrently; failures are logged, collected and returned."""
        jobs = []
        for item in events:
            if item.channel is not None:
                jobs.append(
                    lambda item=item: self.emit_on_channels(item.channel, item.event, item.data)
                )
            else:
                jobs.append(
                    lambda item=item: self.emit(item.event, item.data, item.org_member_public_ids)
                )
        return await gather_best_effort(jobs, limit=self.fanout_limit, label="realtime")

    def publish(self, events: Iterable[RealtimeEvent]) -> None:
        """Sync entry point for services running in worker threads."""
        pending = list(events)
        if not pending:
            return
        try:
            run_async(self.emit_many(pending))
        except Exception:
            logger.exception("Realtime publish failed for %d events", len(pending))


def space_event(space_public_id: str, event: str, data: dict) -> RealtimeEvent:
    return RealtimeEvent(event=event, data=data, channel=space_channel(space_public_id))


def member_event(org_member_public_ids: Iterable[str], event: str, data: dict) -> RealtimeEvent:
    return RealtimeEvent(event=event, data=data, org_member_public_ids=tuple(org_member_public_ids))


notifier = RealtimeNotifier(manager)
