"""
Shared fixtures for servo system tests

Tests run against in-memory sinks; nothing is written to /dev/pi-blaster.
"""

import logging

import pytest
import yaml

from piservo.core.events import EventBus
from piservo.core.logging_setup import MODULE_LOGS
from piservo.motion.dispatcher import ServoDispatcher
from piservo.motion.sink import RecordingSink


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def event_bus():
    bus = EventBus()
    yield bus
    bus.shutdown()


@pytest.fixture
def dispatcher(sink, event_bus):
    """Running dispatcher with a short flush interval"""
    d = ServoDispatcher(sink, flush_interval=0.01, event_bus=event_bus)
    d.start()
    yield d
    d.shutdown()


@pytest.fixture
def quiet_dispatcher(sink, event_bus):
    """Running dispatcher whose flush timer never fires during a test"""
    d = ServoDispatcher(sink, flush_interval=60.0, event_bus=event_bus)
    d.start()
    yield d
    d.shutdown()


@pytest.fixture
def config_data():
    """Minimal valid configuration"""
    return {
        'system': {
            'log_level': 'INFO',
            'simulation_mode': False
        },
        'sink': {
            'path': '/dev/pi-blaster',
            'precision': 4
        },
        'dispatcher': {
            'flush_interval': 0.02,
            'sample_base': 0.005,
            'sample_scale': 0.01
        },
        'servo': {
            'max_speed': 315.7,
            'update_interval': 0.003,
            'min_pulse': 0.05,
            'max_pulse': 0.25
        },
        'servos': {
            'pan': {'channel': 14, 'flags': ['centered']},
            'tilt': {'channel': 15, 'position': 90, 'speed': 0.5}
        }
    }


@pytest.fixture
def write_config(tmp_path):
    """Write a config dict to a temporary YAML file and return its path"""
    def _write(data, name: str = "servo_config.yaml"):
        path = tmp_path / name
        with open(path, 'w', encoding='utf-8') as f:
            yaml.safe_dump(data, f)
        return path
    return _write


@pytest.fixture
def restore_logging():
    """Undo handler and level changes made by setup_logging"""
    root = logging.getLogger()
    saved_handlers = root.handlers[:]
    saved_level = root.level
    yield
    for logger in [root] + [logging.getLogger(name) for name, _ in MODULE_LOGS]:
        for handler in logger.handlers[:]:
            logger.removeHandler(handler)
            handler.close()
    for handler in saved_handlers:
        root.addHandler(handler)
    root.setLevel(saved_level)
