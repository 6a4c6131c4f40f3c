"""
piservo - batched, speed-limited servo control for pi-blaster style sinks

Servos compute smooth trajectories on their own stepper threads; a single
dispatcher samples them and writes batched ``channel=value`` lines to the
output sink at a bounded rate.
"""

from piservo.application import ServoApplication
from piservo.motion import (
    AsyncServo,
    DiscardSink,
    FileSink,
    RateLimiter,
    RecordingSink,
    Servo,
    ServoDispatcher,
    ServoFlags,
    Sink,
    connect,
    open_sink,
)

__version__ = "0.1.0"

__all__ = [
    'ServoApplication',
    'AsyncServo',
    'DiscardSink',
    'FileSink',
    'RateLimiter',
    'RecordingSink',
    'Servo',
    'ServoDispatcher',
    'ServoFlags',
    'Sink',
    'connect',
    'open_sink',
]
