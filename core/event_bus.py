"""
Event Bus System for Sentinel
"""

import logging
import asyncio
import uuid
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List, Callable, Union
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger('sentinel.core.event_bus')

# Event types published by Sentinel components
HEALTH_SNAPSHOT = 'health_snapshot'
TARGET_CHECKED = 'target_checked'
ALERT_RAISED = 'alert_raised'
ROTATION_COMPLETED = 'rotation_completed'
RECOVERY_STARTED = 'recovery_started'
RECOVERY_STEP = 'recovery_step'
RECOVERY_FINISHED = 'recovery_finished'


class EventPriority(Enum):
    """Event handler priority levels"""
    CRITICAL = 0
    HIGH = 10
    NORMAL = 50
    LOW = 100


@dataclass
class Event:
    """
    Event envelope carrying an immutable payload.

    Publishers put frozen snapshots or copies in ``data`` so that
    subscribers never share mutable state with the component.
    """

    event_type: str
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    source: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def get_event_data(self, key: str, default: Any = None) -> Any:
        """Get event data with fallback"""
        return self.data.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'event_type': self.event_type,
            'event_id': self.event_id,
            'timestamp': self.timestamp.isoformat(),
            'source': self.source,
            'data': {k: v.to_dict() if hasattr(v, 'to_dict') else v for k, v in self.data.items()},
        }


@dataclass
class EventHandler:
    """Event handler registration information"""

    handler_id: str
    handler_func: Callable
    event_types: List[str]
    priority: EventPriority = EventPriority.NORMAL
    async_handler: bool = False

    def __post_init__(self):
        self.async_handler = asyncio.iscoroutinefunction(self.handler_func)

    def can_handle(self, event: Event) -> bool:
        return event.event_type in self.event_types or '*' in self.event_types


class EventBus:
    """
    Pub/sub channel between Sentinel components.

    Handler failures are isolated: they are logged and counted, never
    propagated back to the publisher.
    """

    def __init__(self, max_history: int = 500):
        self._handlers: Dict[str, EventHandler] = {}
        self._event_history: List[Event] = []
        self._max_history = max_history
        self._stats = {
            'events_published': 0,
            'events_handled': 0,
            'handler_errors': 0
        }

        logger.info("EventBus initialized")

    def subscribe(
        self,
        event_types: Union[str, List[str]],
        handler: Callable,
        handler_id: Optional[str] = None,
        priority: EventPriority = EventPriority.NORMAL
    ) -> str:
        """
        Subscribe to events with a handler function.

        Args:
            event_types: Event type(s) to subscribe to ('*' for all)
            handler: Handler function (sync or async)
            handler_id: Unique handler ID (auto-generated if None)
            priority: Handler priority level

        Returns:
            Handler ID for later unsubscription
        """
        if isinstance(event_types, str):
            event_types = [event_types]

        if handler_id is None:
            handler_id = f"{handler.__name__}_{id(handler)}"

        self._handlers[handler_id] = EventHandler(
            handler_id=handler_id,
            handler_func=handler,
            event_types=event_types,
            priority=priority
        )

        logger.debug(f"Subscribed handler {handler_id} to events: {event_types}")
        return handler_id

    def unsubscribe(self, handler_id: str) -> bool:
        if handler_id in self._handlers:
            del self._handlers[handler_id]
            logger.debug(f"Unsubscribed handler {handler_id}")
            return True
        return False

    async def publish_async(self, event: Event) -> int:
        """
        Publish an event and wait for all async handlers to complete.

        Returns:
            Number of handlers that processed the event
        """
        self._record(event)

        handled_count = 0
        async_tasks = []

        for handler in self._get_applicable_handlers(event):
            try:
                if handler.async_handler:
                    async_tasks.append(asyncio.create_task(self._handle_async(handler, event)))
                else:
                    handler.handler_func(event)
                handled_count += 1
                self._stats['events_handled'] += 1
            except Exception as e:
                self._stats['handler_errors'] += 1
                logger.error(f"Error in handler {handler.handler_id}: {e}")

        if async_tasks:
            await asyncio.gather(*async_tasks, return_exceptions=True)

        logger.debug(f"Published event {event.event_type} to {handled_count} handlers")
        return handled_count

    async def emit_async(self, event_type: str, source: Optional[str] = None, **data) -> int:
        return await self.publish_async(Event(event_type=event_type, source=source, data=data))

    def get_stats(self) -> Dict[str, Any]:
        """Get event bus statistics"""
        return {
            **self._stats,
            'active_handlers': len(self._handlers),
            'history_size': len(self._event_history)
        }

    def get_event_history(self, event_type: Optional[str] = None, limit: Optional[int] = None) -> List[Event]:
        """
        Get recent event history, optionally filtered by type.

        Args:
            event_type: Only return events of this type
            limit: Maximum number of events to return
        """
        history = [e for e in self._event_history if event_type is None or e.event_type == event_type]
        if limit:
            return history[-limit:]
        return history

    def _get_applicable_handlers(self, event: Event) -> List[EventHandler]:
        handlers = [h for h in self._handlers.values() if h.can_handle(event)]
        handlers.sort(key=lambda h: h.priority.value)
        return handlers

    async def _handle_async(self, handler: EventHandler, event: Event):
        try:
            await handler.handler_func(event)
        except Exception as e:
            self._stats['handler_errors'] += 1
            logger.error(f"Error in async handler {handler.handler_id}: {e}")

    def _record(self, event: Event):
        self._stats['events_published'] += 1
        self._event_history.append(event)
        if len(self._event_history) > self._max_history:
            self._event_history = self._event_history[-self._max_history:]


# Global event bus instance
_global_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get the global event bus instance"""
    global _global_event_bus
    if _global_event_bus is None:
        _global_event_bus = EventBus()
    return _global_event_bus
