"""
Motion Control Module

Handles servo motion including:
- Per-servo speed-limited stepping and settle notification
- Batched, rate-limited output through a single dispatcher
- Output sinks (pi-blaster pipe, discard, in-memory)
"""

from .adapter import AsyncServo
from .dispatcher import ServoDispatcher, adaptive_sample_interval, format_batch, format_release
from .limiter import RateLimiter
from .servo import Servo, ServoFlags, clamp, connect, remap
from .sink import DiscardSink, FileSink, RecordingSink, Sink, open_sink

__all__ = [
    'AsyncServo',
    'ServoDispatcher',
    'adaptive_sample_interval',
    'format_batch',
    'format_release',
    'RateLimiter',
    'Servo',
    'ServoFlags',
    'clamp',
    'connect',
    'remap',
    'DiscardSink',
    'FileSink',
    'RecordingSink',
    'Sink',
    'open_sink',
]
