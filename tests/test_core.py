"""
Test Core Infrastructure

Tests exceptions, the event bus and logging setup.
"""

import logging

import pytest

from piservo.core.events import EventBus, EventConstants, EventPriority, ServoEvent
from piservo.core.exceptions import (
    ChannelInUseError,
    ConfigurationError,
    DispatcherError,
    ServoClosedError,
    ServoError,
    ServoSystemError,
    SinkError,
    SinkWriteError
)
from piservo.core.logging_setup import MODULE_LOGS, ColoredFormatter, ServoLogFilter, setup_logging


class TestExceptions:
    """Test exception hierarchy and formatting"""

    def test_message_only(self):
        assert str(ServoSystemError("boom")) == "boom"

    def test_full_format(self):
        error = ServoSystemError("boom", error_code="E42", module="sink")
        assert str(error) == "boom | Module: sink | Code: E42"

    def test_hierarchy(self):
        assert issubclass(SinkWriteError, SinkError)
        assert issubclass(SinkError, ServoSystemError)
        assert issubclass(ConfigurationError, ServoSystemError)
        assert issubclass(ServoClosedError, ServoError)

    def test_channel_in_use_is_dispatcher_error(self):
        assert issubclass(ChannelInUseError, DispatcherError)


class TestEventBus:
    """Test publish/subscribe"""

    def test_publish_to_subscriber(self):
        bus = EventBus()
        received = []
        assert bus.subscribe(EventConstants.SERVO_SETTLED, received.append, "test")

        event = bus.publish(EventConstants.SERVO_SETTLED, {'channel': 3}, source_module="motion")

        assert received == [event]
        assert isinstance(event, ServoEvent)
        assert event.data == {'channel': 3}
        assert event.priority == EventPriority.NORMAL

    def test_other_event_types_ignored(self):
        bus = EventBus()
        received = []
        bus.subscribe(EventConstants.SERVO_CLOSED, received.append)
        bus.publish(EventConstants.SERVO_SETTLED)
        assert received == []

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        bus.subscribe(EventConstants.SINK_RECOVERED, received.append)

        assert bus.unsubscribe(EventConstants.SINK_RECOVERED, received.append)
        assert not bus.unsubscribe(EventConstants.SINK_RECOVERED, received.append)
        bus.publish(EventConstants.SINK_RECOVERED)
        assert received == []

    def test_subscriber_errors_are_isolated(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("subscriber failure")

        bus.subscribe(EventConstants.SINK_WRITE_FAILED, broken, "broken")
        bus.subscribe(EventConstants.SINK_WRITE_FAILED, received.append, "good")
        bus.publish(EventConstants.SINK_WRITE_FAILED)

        assert len(received) == 1
        stats = bus.get_stats()
        assert stats['error_count'] == 1
        assert stats['events_processed'] == 1
        assert stats['active_subscriptions'] == 2

    def test_history_limits(self):
        bus = EventBus(max_history=3)
        for i in range(5):
            bus.publish(EventConstants.SERVO_SETTLED, {'i': i})

        history = bus.get_event_history()
        assert [event.data['i'] for event in history] == [2, 3, 4]
        assert len(bus.get_event_history(limit=1)) == 1
        assert bus.get_event_history(EventConstants.SERVO_CLOSED) == []

    def test_shutdown_clears(self):
        bus = EventBus()
        bus.subscribe(EventConstants.SERVO_SETTLED, lambda e: None)
        bus.publish(EventConstants.SERVO_SETTLED)
        bus.shutdown()
        stats = bus.get_stats()
        assert stats['active_subscriptions'] == 0
        assert stats['history_size'] == 0


class TestLogging:
    """Test logging configuration"""

    def test_creates_log_files(self, tmp_path, restore_logging):
        setup_logging("DEBUG", log_dir=tmp_path, enable_console=False)

        logging.getLogger("piservo.motion.dispatcher").error("sink went away")
        logging.getLogger("piservo.core.config_manager").info("config loaded")
        for handler in logging.getLogger().handlers:
            handler.flush()
        for name, _ in MODULE_LOGS:
            for handler in logging.getLogger(name).handlers:
                handler.flush()

        system_log = (tmp_path / "servo_system.log").read_text(encoding='utf-8')
        assert "sink went away" in system_log
        assert "| motion   |" in system_log
        assert "sink went away" in (tmp_path / "servo_errors.log").read_text(encoding='utf-8')
        assert "config loaded" not in (tmp_path / "servo_errors.log").read_text(encoding='utf-8')

        motion_log = (tmp_path / "motion_control.log").read_text(encoding='utf-8')
        assert "sink went away" in motion_log
        assert "config loaded" not in motion_log
        assert "config loaded" in (tmp_path / "core.log").read_text(encoding='utf-8')

    def test_console_only(self, tmp_path, restore_logging):
        root = setup_logging("WARNING", log_dir=tmp_path / "unused", enable_file=False)
        assert root.level == logging.WARNING
        assert len(root.handlers) == 1
        assert not (tmp_path / "unused").exists()

    def test_repeated_setup_does_not_duplicate(self, tmp_path, restore_logging):
        setup_logging("INFO", log_dir=tmp_path, enable_console=False)
        setup_logging("INFO", log_dir=tmp_path, enable_console=False)
        assert len(logging.getLogger().handlers) == 2
        assert len(logging.getLogger("piservo.motion").handlers) == 1

    def test_colored_formatter_keeps_record_plain(self):
        formatter = ColoredFormatter(fmt='%(levelname)s %(message)s')
        record = logging.LogRecord("piservo.motion", logging.ERROR, __file__, 1, "msg", None, None)
        output = formatter.format(record)
        assert "\033[" in output
        assert record.levelname == "ERROR"

    @pytest.mark.parametrize("name,expected", [
        ("piservo.motion.servo", "motion"),
        ("piservo.core.events", "core"),
        ("piservo", "system"),
        ("other.lib", "system"),
    ])
    def test_log_filter_module(self, name, expected):
        record = logging.LogRecord(name, logging.INFO, __file__, 1, "msg", None, None)
        assert ServoLogFilter().filter(record)
        assert record.servo_module == expected
