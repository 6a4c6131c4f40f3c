"""
Servo Motion State Machine

Tracks position, target and speed of one servo channel and steps the
position toward the target at a bounded rate on a background thread.
The dispatcher samples the resulting output values; callers block on
``wait()`` until the servo settles.

Positions are kept in a canonical 0-180 degree domain. The CENTERED and
NORMALIZED flags only change how values are read and written:

    CENTERED               -90 .. 90
    NORMALIZED               0 .. 2
    CENTERED | NORMALIZED   -1 .. 1

Author: Servo System Development
Created: October 2026
"""

import logging
import math
import threading
import time
from enum import IntFlag
from typing import Optional, TYPE_CHECKING

from piservo.core.events import EventBus, EventConstants
from piservo.core.exceptions import ServoClosedError
from piservo.motion.limiter import RateLimiter

if TYPE_CHECKING:
    from piservo.motion.dispatcher import ServoDispatcher

logger = logging.getLogger(__name__)

# 0.19s/60 degrees
MAX_SPEED = 315.7
# Stepper period, roughly 3ms per degree at full speed
UPDATE_INTERVAL = 0.003
# pi-blaster duty cycle fractions for 0 and 180 degrees
MIN_PULSE = 0.05
MAX_PULSE = 0.25

MIN_POSITION = 0.0
MAX_POSITION = 180.0
NEUTRAL_OUTPUT = 0.0


class ServoFlags(IntFlag):
    """Input/output transforms applied to positions"""
    NONE = 0
    # Range becomes -90 to 90
    CENTERED = 1
    # Range becomes 0 to 2 (-1 to 1 together with CENTERED)
    NORMALIZED = 2


def describe_flags(flags: ServoFlags) -> str:
    """Human readable flag list, e.g. '( Centered Normalized )'"""
    if not flags:
        return "( NONE )"

    names = []
    if flags & ServoFlags.CENTERED:
        names.append("Centered")
    if flags & ServoFlags.NORMALIZED:
        names.append("Normalized")
    return f"( {' '.join(names)} )"


def clamp(value: float, minimum: float, maximum: float) -> float:
    return max(minimum, min(maximum, value))


def remap(value: float, in_min: float, in_max: float, out_min: float, out_max: float) -> float:
    """Affine map of value from [in_min, in_max] to [out_min, out_max]"""
    return out_min + (value - in_min) * (out_max - out_min) / (in_max - in_min)


class Servo:
    """
    One servo channel driven through a dispatcher

    State (position, target, speed, settled) is guarded by a single lock
    shared by the public API, the stepper thread and the dispatcher's
    sampler. ``wait()`` uses a condition on the same lock and is woken on
    every transition to settled.

    Use ``connect()`` to create and register a servo in one call.
    """

    def __init__(self, channel: int, dispatcher: 'ServoDispatcher',
                 name: Optional[str] = None,
                 flags: ServoFlags = ServoFlags.NONE,
                 min_pulse: float = MIN_PULSE,
                 max_pulse: float = MAX_PULSE,
                 max_speed: float = MAX_SPEED,
                 update_interval: float = UPDATE_INTERVAL,
                 event_bus: Optional[EventBus] = None):
        if not min_pulse < max_pulse:
            raise ValueError(f"min_pulse ({min_pulse}) must be below max_pulse ({max_pulse})")
        if max_speed < 0:
            raise ValueError(f"max_speed must be >= 0, got {max_speed}")

        self._channel = channel
        self.name = name or f"Servo{channel}"
        self._flags = ServoFlags(flags)
        self._min_pulse = float(min_pulse)
        self._max_pulse = float(max_pulse)
        self._max_speed = float(max_speed)

        self._dispatcher = dispatcher
        self._event_bus = event_bus

        self._lock = threading.RLock()
        self._settled_cond = threading.Condition(self._lock)
        self._limiter = RateLimiter(update_interval)

        self._position = MIN_POSITION
        self._target = MIN_POSITION
        self._speed = self._max_speed
        self._settled = True
        # Output changed since the dispatcher last sampled it
        self._dirty = False
        self._generation = 0
        self._stepper: Optional[threading.Thread] = None
        self._connected = False
        self._closed = False

    def __str__(self):
        return f'servo "{self.name}" connected to channel({self._channel}) [flags: {describe_flags(self.flags)}]'

    def __repr__(self):
        return f"Servo(channel={self._channel}, name={self.name!r})"

    @property
    def channel(self) -> int:
        return self._channel

    @property
    def min_pulse(self) -> float:
        return self._min_pulse

    @property
    def max_pulse(self) -> float:
        return self._max_pulse

    @property
    def max_speed(self) -> float:
        return self._max_speed

    @property
    def flags(self) -> ServoFlags:
        with self._lock:
            return self._flags

    @flags.setter
    def flags(self, flags: ServoFlags):
        with self._lock:
            self._flags = ServoFlags(flags)

    @property
    def speed(self) -> float:
        """Current maximum rate of change in degrees per second"""
        with self._lock:
            return self._speed

    @property
    def target(self) -> float:
        """Canonical (0-180) target"""
        with self._lock:
            return self._target

    @property
    def settled(self) -> bool:
        with self._lock:
            return self._settled

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def connect(self) -> 'Servo':
        """Register with the dispatcher so position changes reach the sink"""
        with self._lock:
            if self._closed:
                raise ServoClosedError(f"{self.name} is closed", module="motion")
            if self._connected:
                return self
            self._connected = True
            # Emit the initial position on the first sample
            self._dirty = True

        try:
            self._dispatcher.subscribe(self)
        except Exception:
            with self._lock:
                self._connected = False
            raise

        logger.info(f"Connected {self}")
        self._publish(EventConstants.SERVO_CONNECTED)
        return self

    # Transforms between the caller's domain and the canonical one
    def _to_canonical(self, value: float) -> float:
        if self._flags & ServoFlags.NORMALIZED:
            value *= 90
        if self._flags & ServoFlags.CENTERED:
            value += 90
        return clamp(value, MIN_POSITION, MAX_POSITION)

    def _from_canonical(self, value: float) -> float:
        if self._flags & ServoFlags.CENTERED:
            value -= 90
        if self._flags & ServoFlags.NORMALIZED:
            value /= 90
        return value

    def position(self) -> float:
        """Current position adjusted for the servo's flags"""
        with self._lock:
            return self._from_canonical(self._position)

    def set_position(self, value: float) -> 'Servo':
        """
        Jump to a position without interpolation

        Cancels any motion in progress. Intended for declaring the initial
        position before or right after connecting.
        """
        with self._lock:
            if self._closed:
                raise ServoClosedError(f"{self.name} is closed", module="motion")
            self._position = self._to_canonical(value)
            self._dirty = True
            transitioned = self._mark_settled()

        if transitioned:
            self._publish(EventConstants.SERVO_SETTLED, {'position': self.position()})
        return self

    def set_speed(self, fraction: float) -> 'Servo':
        """
        Set the speed as a fraction (0-1, clamped) of the maximum speed

        Takes effect on the next step. A speed of 0 holds the servo where
        it is.
        """
        with self._lock:
            self._speed = self._max_speed * clamp(fraction, 0.0, 1.0)
        return self

    def move_to(self, value: float) -> 'Servo':
        """
        Set a new target in the caller's domain (clamped to range)

        Non-blocking. Starts the stepper if the servo was idle. Returns the
        servo so that ``servo.move_to(x).wait()`` blocks until arrival.
        """
        with self._lock:
            if self._closed:
                raise ServoClosedError(f"{self.name} is closed", module="motion")

            if self._speed == 0:
                self._target = self._position
                return self

            self._target = self._to_canonical(value)
            if self._settled and self._target != self._position:
                self._settled = False
                self._start_stepper()

        return self

    def stop(self) -> 'Servo':
        """Stop where the servo is now; wakes all waiters"""
        with self._lock:
            transitioned = self._mark_settled()

        if transitioned:
            logger.debug(f"{self.name} stopped")
            self._publish(EventConstants.SERVO_SETTLED, {'position': self.position()})
        return self

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until the servo has settled

        Args:
            timeout: Maximum wait time in seconds (None waits forever)

        Returns:
            True if the servo is settled
        """
        with self._settled_cond:
            return self._settled_cond.wait_for(lambda: self._settled, timeout)

    def pwm(self) -> float:
        """Output value for the current position"""
        with self._lock:
            return self._output()

    def _output(self) -> float:
        # caller holds self._lock
        return remap(self._position, MIN_POSITION, MAX_POSITION, self._min_pulse, self._max_pulse)

    def position_from_output(self, output: float) -> float:
        """Canonical position that produces the given output value"""
        return remap(output, self._min_pulse, self._max_pulse, MIN_POSITION, MAX_POSITION)

    def sample(self) -> Optional[float]:
        """
        Output value if it changed since the previous sample, else None

        Moving servos are always sampled; a settled servo is sampled once
        more after its final step so the end position is not lost.
        """
        with self._lock:
            if self._settled and not self._dirty:
                return None
            self._dirty = False
            return self._output()

    def _mark_settled(self) -> bool:
        # caller holds self._lock; returns True on a Moving -> Idle transition
        was_settled = self._settled
        self._target = self._position
        self._settled = True
        self._settled_cond.notify_all()
        return not was_settled

    def _start_stepper(self):
        # caller holds self._lock
        self._generation += 1
        self._stepper = threading.Thread(
            target=self._reach,
            args=(self._generation,),
            name=f"{self.name}-stepper",
            daemon=True
        )
        self._stepper.start()

    def _reach(self, generation: int):
        """Stepper loop: advance toward the target until settled or superseded"""
        last = time.monotonic()
        while True:
            self._limiter.wait()
            now = time.monotonic()
            with self._lock:
                if generation != self._generation or self._settled:
                    return
                arrived = self._step(now - last)
            last = now

            if arrived:
                self._publish(EventConstants.SERVO_SETTLED, {'position': self.position()})
                return

    def _step(self, elapsed: float) -> bool:
        # caller holds self._lock
        if self._speed == 0:
            self._target = self._position

        delta = self._target - self._position
        displacement = self._speed * elapsed
        if abs(delta) <= displacement:
            if delta:
                self._position = self._target
                self._dirty = True
            self._mark_settled()
            return True

        self._position += math.copysign(displacement, delta)
        self._dirty = True
        return False

    def close(self):
        """
        Stop, drive the output to neutral and deregister from the dispatcher

        Safe to call more than once.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._mark_settled()
            stepper, self._stepper = self._stepper, None
            connected, self._connected = self._connected, False

        if connected:
            self._dispatcher.unsubscribe(self)
        if stepper is not None and stepper is not threading.current_thread():
            stepper.join()

        logger.info(f"Closed {self.name} on channel {self._channel}")
        self._publish(EventConstants.SERVO_CLOSED)

    def _publish(self, event_type: str, data: Optional[dict] = None):
        if self._event_bus is None:
            return
        payload = {'channel': self._channel, 'name': self.name}
        payload.update(data or {})
        self._event_bus.publish(event_type, payload, source_module="motion")


def connect(channel: int, dispatcher: 'ServoDispatcher',
            position: Optional[float] = None,
            speed: Optional[float] = None,
            **kwargs) -> Servo:
    """
    Create a servo on ``channel`` and register it with ``dispatcher``

    Args:
        channel: Output channel (GPIO number for pi-blaster)
        dispatcher: Dispatcher that batches this servo's output
        position: Optional initial position in the servo's domain
        speed: Optional speed fraction (0-1)
        **kwargs: Forwarded to Servo (name, flags, min_pulse, ...)

    Returns:
        The connected servo
    """
    servo = Servo(channel, dispatcher, **kwargs)
    if position is not None:
        servo.set_position(position)
    if speed is not None:
        servo.set_speed(speed)
    return servo.connect()
