"""
Fleet timing tests

Drives many servos through one dispatcher at once and checks that
stepping stays on schedule. Run with ``pytest -m slow``.
"""

import threading
import time

import pytest

from piservo.motion.dispatcher import ServoDispatcher
from piservo.motion.servo import MAX_SPEED, connect
from piservo.motion.sink import RecordingSink

SERVO_COUNT = 100
FULL_SWEEP_TIME = 180.0 / MAX_SPEED
TOLERANCE = 0.05


@pytest.mark.slow
def test_hundred_servos_full_sweep():
    sink = RecordingSink()
    with ServoDispatcher(sink) as dispatcher:
        servos = [connect(channel, dispatcher) for channel in range(SERVO_COUNT)]
        elapsed = [None] * SERVO_COUNT
        start = threading.Barrier(SERVO_COUNT)

        def sweep(index):
            servo = servos[index]
            start.wait()
            began = time.monotonic()
            servo.move_to(180).wait()
            elapsed[index] = time.monotonic() - began

        threads = [threading.Thread(target=sweep, args=(i,)) for i in range(SERVO_COUNT)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        for index, duration in enumerate(elapsed):
            assert duration == pytest.approx(FULL_SWEEP_TIME, abs=TOLERANCE), f"servo {index}"
            assert servos[index].position() == 180

        for servo in servos:
            servo.close()

    assert sink.lines[-1] == "*=0.0000"
