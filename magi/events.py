"""
Event log for deliberation steps.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any, Optional
from uuid import UUID, uuid4

from redis.exceptions import RedisError

from .config import settings

logger = logging.getLogger(__name__)


class EventType(StrEnum):
    STEP_STARTED = "step.started"
    STEP_COMPLETED = "step.completed"
    STEP_FAILED = "step.failed"

    CONTEXT_ASSEMBLED = "context.assembled"

    PROPOSAL_STORED = "proposal.stored"
    PROPOSAL_FAILED = "proposal.failed"

    VOTE_STORED = "vote.stored"
    VOTE_FALLBACK = "vote.fallback"
    VOTE_SKIPPED = "vote.skipped"

    CONSENSUS_REACHED = "consensus.reached"
    CONSENSUS_FAILED = "consensus.failed"


@dataclass
class DeliberationEvent:
    """One observable thing that happened during a step."""

    id: UUID = field(default_factory=uuid4)
    type: EventType = EventType.STEP_STARTED
    session_id: Optional[str] = None
    step: Optional[str] = None
    agent: Optional[str] = None
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "type": self.type.value,
            "session_id": self.session_id,
            "step": self.step,
            "agent": self.agent,
            "message": self.message,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


EventHandler = Callable[[DeliberationEvent], Awaitable[None] | None]


class EventEmitter:
    """Emits events to registered handlers."""

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []

    def on_event(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def remove_handler(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    async def emit(self, event: DeliberationEvent) -> None:
        for handler in self._handlers:
            try:
                result = handler(event)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Event handler failed for %s", event.type.value)


event_bus = EventEmitter()


class EventLog:
    """Ordered events of a single step; the messages feed diagnostics."""

    def __init__(
        self, session_id: str, step: str, *, emitter: EventEmitter | None = None
    ) -> None:
        self.session_id = session_id
        self.step = step
        self.events: list[DeliberationEvent] = []
        self._emitter = emitter if emitter is not None else event_bus

    async def record(
        self,
        type: EventType,
        message: str,
        *,
        agent: str | None = None,
        **data: Any,
    ) -> DeliberationEvent:
        event = DeliberationEvent(
            type=type,
            session_id=self.session_id,
            step=self.step,
            agent=agent,
            message=message,
            data=data,
        )
        self.events.append(event)
        logger.info(message)
        await self._emitter.emit(event)
        return event

    @property
    def messages(self) -> list[str]:
        return [event.message for event in self.events]


async def publish_event_handler(event: DeliberationEvent) -> None:
    """Handler that publishes events to Redis Pub/Sub."""
    if not event.session_id:
        return

    try:
        from .redis_client import get_redis_client

        redis = get_redis_client()
        channel = f"channel:session:{event.session_id}"
        await redis.publish(channel, json.dumps(event.to_dict()))
    except (RedisError, OSError) as exc:
        logger.warning("Redis publish failed: %s", exc)


if settings.redis_events_enabled:
    event_bus.on_event(publish_event_handler)
