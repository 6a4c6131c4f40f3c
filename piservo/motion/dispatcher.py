"""
Servo Output Dispatcher

Multiplexes the output of every connected servo into one rate-limited
stream of batched command lines. A single loop thread owns the servo
registry and the pending batch; other threads hand it work through an
event queue, so the sink only ever has one writer.

Loop cadences:
- sample: every registered servo with fresh motion is read into the
  pending batch. Gated by a token bucket whose period grows with the
  log of the fleet size.
- flush: the pending batch is written as one line of
  ``channel=value`` tokens and cleared. Empty batches are not written.

Author: Servo System Development
Created: October 2026
"""

import logging
import math
import queue
import threading
import time
from concurrent.futures import Future
from typing import Any, Callable, Dict, List, Optional, TYPE_CHECKING

from piservo.core.config_manager import DispatcherConfig
from piservo.core.events import EventBus, EventConstants, EventPriority
from piservo.core.exceptions import (
    ChannelInUseError, DispatcherError, DispatcherShutdownError, SinkWriteError
)
from piservo.motion.limiter import RateLimiter
from piservo.motion.servo import NEUTRAL_OUTPUT
from piservo.motion.sink import DiscardSink, Sink

if TYPE_CHECKING:
    from piservo.motion.servo import Servo

logger = logging.getLogger(__name__)

DEFAULT_FLUSH_INTERVAL = 0.04
DEFAULT_SAMPLE_BASE = 0.005
DEFAULT_SAMPLE_SCALE = 0.010
DEFAULT_PRECISION = 4
# Channel token meaning "every channel" in the release line
WILDCARD_CHANNEL = "*"

_SHUTDOWN = object()


def adaptive_sample_interval(count: int, base: float = DEFAULT_SAMPLE_BASE,
                             scale: float = DEFAULT_SAMPLE_SCALE) -> float:
    """
    Sampling period for a fleet of ``count`` servos

    Grows with log10(count + 1): responsive for a handful of servos while
    bounding the total sampling work of large fleets.
    """
    return base + scale * math.log10(max(count, 0) + 1)


def format_batch(data: Dict[int, float], precision: int = DEFAULT_PRECISION) -> str:
    """Serialize a batch as space separated ``channel=value`` tokens"""
    return " ".join(f"{channel}={value:.{precision}f}" for channel, value in sorted(data.items()))


def format_release(precision: int = DEFAULT_PRECISION) -> str:
    """Line setting every channel to neutral"""
    return f"{WILDCARD_CHANNEL}={NEUTRAL_OUTPUT:.{precision}f}"


class ServoDispatcher:
    """
    Single serialization point between servos and the output sink

    The loop thread starts on first use (or ``start()``) and stops once,
    on ``shutdown()``. Registry and pending batch are only touched by
    that thread.
    """

    NEW = "new"
    RUNNING = "running"
    STOPPED = "stopped"

    def __init__(self, sink: Optional[Sink] = None,
                 flush_interval: float = DEFAULT_FLUSH_INTERVAL,
                 sample_base: float = DEFAULT_SAMPLE_BASE,
                 sample_scale: float = DEFAULT_SAMPLE_SCALE,
                 precision: int = DEFAULT_PRECISION,
                 backoff_initial: float = 0.05,
                 backoff_max: float = 2.0,
                 event_bus: Optional[EventBus] = None):
        if flush_interval <= 0:
            raise ValueError(f"flush_interval must be > 0, got {flush_interval}")
        if not 2 <= precision <= 6:
            raise ValueError(f"precision must be between 2 and 6, got {precision}")

        self.sink = sink if sink is not None else DiscardSink()
        self.precision = precision
        self._event_bus = event_bus

        self._flush_interval = float(flush_interval)
        self._sample_base = sample_base
        self._sample_scale = sample_scale
        self._sample_limiter = RateLimiter(adaptive_sample_interval(0, sample_base, sample_scale))

        self._backoff_initial = backoff_initial
        self._backoff_max = backoff_max
        self._backoff = 0.0
        self._retry_at = 0.0

        # Owned by the loop thread
        self._registry: Dict[int, 'Servo'] = {}
        self._pending: Dict[int, float] = {}
        self._next_flush = 0.0

        self._events: queue.Queue = queue.Queue()
        self._state = self.NEW
        self._state_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

        self.stats: Dict[str, int] = {
            'samples': 0,
            'flushes': 0,
            'write_failures': 0,
        }

    @classmethod
    def from_config(cls, config: DispatcherConfig, sink: Optional[Sink] = None,
                    precision: int = DEFAULT_PRECISION,
                    event_bus: Optional[EventBus] = None) -> 'ServoDispatcher':
        return cls(
            sink=sink,
            flush_interval=config.flush_interval,
            sample_base=config.sample_base,
            sample_scale=config.sample_scale,
            precision=precision,
            backoff_initial=config.backoff_initial,
            backoff_max=config.backoff_max,
            event_bus=event_bus
        )

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()

    @property
    def running(self) -> bool:
        return self._state == self.RUNNING

    @property
    def flush_interval(self) -> float:
        return self._flush_interval

    @property
    def sample_interval(self) -> float:
        return self._sample_limiter.interval

    # Lifecycle
    def start(self) -> 'ServoDispatcher':
        """Start the loop thread; no-op if already running"""
        with self._state_lock:
            if self._state == self.STOPPED:
                raise DispatcherShutdownError("Dispatcher has been shut down", module="dispatcher")
            if self._state == self.RUNNING:
                return self
            self._start_locked()
        return self

    def _start_locked(self):
        # caller holds self._state_lock
        self._state = self.RUNNING
        self._thread = threading.Thread(target=self._run, name="servo-dispatcher", daemon=True)
        self._thread.start()

        if not self.sink.available:
            logger.info("Output sink unavailable: servo output will be discarded")
        logger.info(f"Dispatcher started (flush every {self._flush_interval * 1000:.0f}ms)")

    def shutdown(self):
        """
        Flush outstanding output, release every channel and stop the loop

        Blocks until the loop thread has exited; nothing is written to the
        sink after this returns. Later calls are no-ops.
        """
        if threading.current_thread() is self._thread:
            raise DispatcherError("shutdown() called from the dispatcher thread", module="dispatcher")

        with self._state_lock:
            if self._state == self.STOPPED:
                logger.debug("Dispatcher already shut down")
                return
            was_running = self._state == self.RUNNING
            self._state = self.STOPPED
            if was_running:
                self._events.put(_SHUTDOWN)

        if was_running:
            self._thread.join()
        else:
            # Loop never ran, so this thread is the only writer
            self._write_release()

        logger.info("Dispatcher stopped")
        self._publish(EventConstants.DISPATCHER_STOPPED, dict(self.stats))

    # Cross-thread calls into the loop
    def _call(self, fn: Callable[..., Any], *args) -> Any:
        if threading.current_thread() is self._thread:
            return fn(*args)

        future: Future = Future()
        with self._state_lock:
            if self._state == self.STOPPED:
                raise DispatcherShutdownError("Dispatcher has been shut down", module="dispatcher")
            if self._state == self.NEW:
                self._start_locked()
            self._events.put((fn, args, future))
        return future.result()

    def _inspect(self, fn: Callable[[], Any]) -> Any:
        if self._state == self.STOPPED and not (self._thread and self._thread.is_alive()):
            return fn()
        return self._call(fn)

    def subscribe(self, servo: 'Servo'):
        """
        Add a servo to the registry (starts the loop on first use)

        Raises:
            DispatcherShutdownError: If the dispatcher has been shut down
            ChannelInUseError: If another servo owns the channel
        """
        self._call(self._add, servo)

    def unsubscribe(self, servo: 'Servo') -> bool:
        """
        Remove a servo and stage a neutral value for its channel

        Returns:
            True if the servo was registered
        """
        try:
            return self._call(self._remove, servo)
        except DispatcherShutdownError:
            logger.debug(f"Dispatcher already shut down, ignoring unsubscribe of {servo.name}")
            return False

    def set_flush_rate(self, interval: float):
        """Replace the flush cadence without disturbing registered servos"""
        if interval <= 0:
            raise ValueError(f"flush interval must be > 0, got {interval}")

        with self._state_lock:
            if self._state == self.NEW:
                self._flush_interval = float(interval)
                return
        self._call(self._set_flush_interval, float(interval))

    def flush_now(self) -> bool:
        """Sample and flush immediately; True if a line was written"""
        return self._call(self._sample_and_flush)

    def registered_channels(self) -> List[int]:
        return self._inspect(lambda: sorted(self._registry))

    def pending_snapshot(self) -> Dict[int, float]:
        return self._inspect(lambda: dict(self._pending))

    def get_stats(self) -> Dict[str, Any]:
        stats = dict(self.stats)
        stats['sample_interval'] = self.sample_interval
        stats['flush_interval'] = self._flush_interval
        stats['sink_available'] = self.sink.available
        return stats

    # Loop thread
    def _run(self):
        self._publish(EventConstants.DISPATCHER_STARTED, {'sink_available': self.sink.available})
        self._next_flush = time.monotonic() + self._flush_interval
        while True:
            timeout = min(self._sample_limiter.delay(), self._next_flush - time.monotonic())
            try:
                if timeout > 0:
                    item = self._events.get(timeout=timeout)
                else:
                    item = self._events.get_nowait()
            except queue.Empty:
                item = None

            if item is _SHUTDOWN:
                self._drain()
                return
            if item is not None:
                self._handle(item)

            if self._sample_limiter.allow():
                self._sample()

            now = time.monotonic()
            if now >= self._next_flush:
                self._flush(now)
                self._next_flush = max(self._next_flush + self._flush_interval, now)

    def _handle(self, item):
        fn, args, future = item
        try:
            future.set_result(fn(*args))
        except Exception as e:
            future.set_exception(e)

    def _add(self, servo: 'Servo'):
        existing = self._registry.get(servo.channel)
        if existing is servo:
            return
        if existing is not None:
            raise ChannelInUseError(
                f"Channel {servo.channel} is owned by {existing.name}; close it before connecting {servo.name}",
                module="dispatcher"
            )

        self._registry[servo.channel] = servo
        self._update_sample_interval()
        logger.debug(f"Subscribed {servo.name} on channel {servo.channel}")

    def _remove(self, servo: 'Servo') -> bool:
        if self._registry.get(servo.channel) is not servo:
            return False

        del self._registry[servo.channel]
        self._pending[servo.channel] = NEUTRAL_OUTPUT
        self._update_sample_interval()
        logger.debug(f"Unsubscribed {servo.name} from channel {servo.channel}")
        return True

    def _update_sample_interval(self):
        interval = adaptive_sample_interval(len(self._registry), self._sample_base, self._sample_scale)
        self._sample_limiter.set_interval(interval)

    def _set_flush_interval(self, interval: float):
        self._flush_interval = interval
        self._next_flush = time.monotonic() + interval
        logger.info(f"Flush interval set to {interval * 1000:.1f}ms")

    def _sample(self):
        for channel, servo in self._registry.items():
            try:
                value = servo.sample()
            except Exception as e:
                logger.error(f"Failed to sample {servo.name} on channel {channel}: {e}")
                continue
            if value is not None:
                self._pending[channel] = value
                self.stats['samples'] += 1

    def _sample_and_flush(self) -> bool:
        self._sample()
        return self._flush(time.monotonic(), force=True)

    def _flush(self, now: float, force: bool = False) -> bool:
        if not self._pending:
            return False
        if not force and now < self._retry_at:
            return False

        line = format_batch(self._pending, self.precision)
        try:
            self.sink.write(line)
        except (SinkWriteError, OSError) as e:
            # Keep the batch; the next attempt writes it together with newer samples
            self.stats['write_failures'] += 1
            self._backoff = min(self._backoff_max, self._backoff * 2 or self._backoff_initial)
            self._retry_at = now + self._backoff
            logger.error(f"Sink write failed ({len(self._pending)} channels pending), "
                         f"retrying in {self._backoff:.2f}s: {e}")
            self._publish(EventConstants.SINK_WRITE_FAILED,
                          {'error': str(e), 'pending': len(self._pending), 'retry_in': self._backoff},
                          EventPriority.HIGH)
            return False

        if self._backoff:
            logger.info("Sink writes recovered")
            self._backoff = 0.0
            self._retry_at = 0.0
            self._publish(EventConstants.SINK_RECOVERED)

        self._pending.clear()
        self.stats['flushes'] += 1
        return True

    def _drain(self):
        """Final flush and release line, run on the loop thread"""
        self._sample()
        self._flush(time.monotonic(), force=True)
        if self._pending:
            # The release line below sets every channel to neutral anyway
            logger.error(f"Final flush failed, discarding {len(self._pending)} pending channel values; "
                         "the release line supersedes them")
            self._pending.clear()
        self._write_release()

    def _write_release(self):
        try:
            self.sink.write(format_release(self.precision))
        except (SinkWriteError, OSError) as e:
            logger.error(f"Failed to release channels at shutdown: {e}")

    def _publish(self, event_type: str, data: Optional[dict] = None,
                 priority: EventPriority = EventPriority.NORMAL):
        if self._event_bus is not None:
            self._event_bus.publish(event_type, data, source_module="dispatcher", priority=priority)
