"""
Event Bus System for Servo Notifications

Provides a thread-safe event bus that servos, the dispatcher and the
sink helpers publish lifecycle notifications to. Subscribers are called
synchronously on the publishing thread, outside of any servo lock.

Author: Servo System Development
Created: October 2026
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class EventPriority(Enum):
    """Event priority levels"""
    LOW = 1
    NORMAL = 2
    HIGH = 3
    CRITICAL = 4


@dataclass
class ServoEvent:
    """Servo system event data structure"""
    event_type: str
    data: Dict[str, Any] = field(default_factory=dict)
    source_module: str = "unknown"
    priority: EventPriority = EventPriority.NORMAL
    timestamp: datetime = field(default_factory=datetime.now)
    event_id: str = field(default_factory=lambda: f"evt_{time.time_ns()}")

    def __str__(self):
        return f"Event({self.event_type}, {self.source_module}, {self.priority.name})"


class EventConstants:
    """Predefined event types for the servo system"""

    # Servo Events
    SERVO_CONNECTED = "servo.connected"
    SERVO_CLOSED = "servo.closed"
    SERVO_SETTLED = "servo.settled"

    # Dispatcher Events
    DISPATCHER_STARTED = "dispatcher.started"
    DISPATCHER_STOPPED = "dispatcher.stopped"

    # Sink Events
    SINK_UNAVAILABLE = "sink.unavailable"
    SINK_WRITE_FAILED = "sink.write_failed"
    SINK_RECOVERED = "sink.recovered"


class EventSubscription:
    """Represents an event subscription"""

    def __init__(self, event_type: str, callback: Callable, subscriber_name: str = "unknown"):
        self.event_type = event_type
        self.callback = callback
        self.subscriber_name = subscriber_name
        self.subscription_time = datetime.now()
        self.call_count = 0
        self.last_called: Optional[datetime] = None

    def __str__(self):
        return f"Subscription({self.event_type}, {self.subscriber_name})"


class EventBus:
    """
    Central event bus for servo system notifications

    Features:
    - Thread-safe event publishing and subscription
    - Event history and statistics
    - Error isolation between subscribers
    """

    def __init__(self, max_history: int = 1000, enable_stats: bool = True):
        self._subscriptions: Dict[str, List[EventSubscription]] = {}
        self._event_history: List[ServoEvent] = []
        self._max_history = max_history
        self._enable_stats = enable_stats
        self._lock = threading.RLock()
        self._stats = {
            'events_published': 0,
            'events_processed': 0,
            'subscription_count': 0,
            'error_count': 0
        }

        logger.debug("Event bus initialized")

    def subscribe(self, event_type: str, callback: Callable[[ServoEvent], None],
                  subscriber_name: str = "unknown") -> bool:
        """
        Subscribe to an event type

        Args:
            event_type: Type of event to subscribe to (use EventConstants)
            callback: Function to call when event occurs
            subscriber_name: Name of subscriber for debugging

        Returns:
            True if subscription successful
        """
        with self._lock:
            subscription = EventSubscription(event_type, callback, subscriber_name)
            self._subscriptions.setdefault(event_type, []).append(subscription)

            if self._enable_stats:
                self._stats['subscription_count'] += 1

        logger.debug(f"Subscribed {subscriber_name} to {event_type}")
        return True

    def unsubscribe(self, event_type: str, callback: Callable) -> bool:
        """
        Unsubscribe a callback from an event type

        Returns:
            True if the callback was subscribed
        """
        with self._lock:
            subscriptions = self._subscriptions.get(event_type)
            if not subscriptions:
                return False

            remaining = [sub for sub in subscriptions if sub.callback != callback]
            if remaining:
                self._subscriptions[event_type] = remaining
            else:
                del self._subscriptions[event_type]

        logger.debug(f"Unsubscribed from {event_type}")
        return len(remaining) != len(subscriptions)

    def publish(self, event_type: str, data: Optional[Dict[str, Any]] = None,
                source_module: str = "unknown", priority: EventPriority = EventPriority.NORMAL) -> ServoEvent:
        """
        Publish an event to all subscribers

        Args:
            event_type: Type of event (use EventConstants)
            data: Event data dictionary
            source_module: Module that published the event
            priority: Event priority level

        Returns:
            The published event
        """
        event = ServoEvent(
            event_type=event_type,
            data=data or {},
            source_module=source_module,
            priority=priority
        )

        with self._lock:
            self._event_history.append(event)
            if len(self._event_history) > self._max_history:
                self._event_history.pop(0)

            if self._enable_stats:
                self._stats['events_published'] += 1

            subscribers = list(self._subscriptions.get(event_type, []))

        for subscription in subscribers:
            self._call_subscriber(subscription, event)

        logger.debug(f"Published event: {event}")
        return event

    def _call_subscriber(self, subscription: EventSubscription, event: ServoEvent):
        """Call a single subscriber with error isolation"""
        try:
            subscription.call_count += 1
            subscription.last_called = datetime.now()
            subscription.callback(event)

            if self._enable_stats:
                with self._lock:
                    self._stats['events_processed'] += 1

        except Exception as e:
            logger.error(f"Error calling subscriber {subscription.subscriber_name} "
                         f"for event {event.event_type}: {e}")
            with self._lock:
                if self._enable_stats:
                    self._stats['error_count'] += 1

    def get_event_history(self, event_type: Optional[str] = None, limit: int = 100) -> List[ServoEvent]:
        """
        Get recent event history

        Args:
            event_type: Filter by event type (None for all events)
            limit: Maximum number of events to return

        Returns:
            List of recent events, oldest first
        """
        with self._lock:
            history = self._event_history.copy()

        if event_type:
            history = [event for event in history if event.event_type == event_type]

        return history[-limit:] if limit else history

    def get_stats(self) -> Dict[str, Any]:
        """Get event bus statistics"""
        with self._lock:
            stats = self._stats.copy()
            stats['active_subscriptions'] = sum(
                len(subs) for subs in self._subscriptions.values()
            )
            stats['event_types'] = len(self._subscriptions)
            stats['history_size'] = len(self._event_history)

        return stats

    def shutdown(self):
        """Drop all subscriptions and history"""
        logger.debug("Shutting down event bus")
        with self._lock:
            self._subscriptions.clear()
            self._event_history.clear()
