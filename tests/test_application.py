"""
Test Servo System Application
"""

import pytest

from piservo.application import ServoApplication, flags_from_names
from piservo.core.events import EventConstants
from piservo.core.exceptions import ChannelInUseError, ConfigurationError, ServoSystemError
from piservo.motion.servo import ServoFlags, connect
from piservo.motion.sink import DiscardSink, FileSink, RecordingSink
from tests.helpers import wait_until


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, restore_logging):
    for var in ('PISERVO_LOG_LEVEL', 'PISERVO_SIMULATION', 'PISERVO_SINK_PATH', 'PISERVO_FLUSH_INTERVAL'):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def config_file(write_config, config_data):
    return write_config(config_data)


class TestFlags:
    """Test flag name parsing"""

    def test_names(self):
        assert flags_from_names([]) == ServoFlags.NONE
        assert flags_from_names(['centered']) == ServoFlags.CENTERED
        assert flags_from_names(['Centered', 'NORMALIZED']) == ServoFlags.CENTERED | ServoFlags.NORMALIZED

    def test_unknown(self):
        with pytest.raises(ConfigurationError):
            flags_from_names(['inverted'])


class TestServoApplication:
    """Test the application lifecycle"""

    def test_connect_before_start(self, config_file):
        app = ServoApplication(config_file, enable_file_logging=False)
        with pytest.raises(ServoSystemError):
            app.connect(14)

    def test_lifecycle(self, config_file):
        sink = RecordingSink()
        with ServoApplication(config_file, enable_file_logging=False, sink=sink) as app:
            assert app.running
            assert app.dispatcher.flush_interval == 0.02

            servo = app.connect(3)
            assert servo.move_to(45).wait(timeout=2.0)
            assert wait_until(lambda: any("3=0.1000" in line for line in sink.lines))

        assert not app.running
        assert servo.closed
        assert sink.lines[-2:] == ["3=0.0000", "*=0.0000"]

    def test_connect_configured(self, config_file):
        sink = RecordingSink()
        with ServoApplication(config_file, enable_file_logging=False, sink=sink) as app:
            servos = app.connect_configured()

            assert set(servos) == {'pan', 'tilt'}
            pan, tilt = servos['pan'], servos['tilt']
            assert pan.name == 'pan'
            assert pan.flags == ServoFlags.CENTERED
            assert pan.position() == pytest.approx(0)
            assert pan.target == pytest.approx(90)
            assert tilt.position() == pytest.approx(90)
            assert tilt.speed == pytest.approx(315.7 / 2)
            assert sorted(app.servos) == [14, 15]
            assert app.dispatcher.registered_channels() == [14, 15]

            assert wait_until(lambda: any("15=0.1500" in line for line in sink.lines))

    def test_reconnect_replaces_servo(self, config_file):
        with ServoApplication(config_file, enable_file_logging=False, sink=RecordingSink()) as app:
            first = app.connect(5)
            second = app.connect(5, name="replacement")

            assert first.closed
            assert app.servos[5] is second
            assert app.dispatcher.registered_channels() == [5]

    def test_channel_owned_elsewhere(self, config_file):
        with ServoApplication(config_file, enable_file_logging=False, sink=RecordingSink()) as app:
            outsider = connect(7, app.dispatcher, name="outsider")
            with pytest.raises(ChannelInUseError):
                app.connect(7)

            assert 7 not in app.servos
            assert not outsider.closed
            outsider.close()
            assert app.connect(7).channel == 7

    def test_overrides(self, config_file):
        with ServoApplication(config_file, enable_file_logging=False, sink=RecordingSink()) as app:
            servo = app.connect(6, flags=ServoFlags.NORMALIZED, position=1.0)
            assert servo.position() == pytest.approx(1.0)
            assert servo.target == pytest.approx(90)

    def test_missing_sink_degrades(self, write_config, config_data, tmp_path):
        config_data['sink']['path'] = str(tmp_path / "missing" / "pi-blaster")
        app = ServoApplication(write_config(config_data), enable_file_logging=False)
        with app:
            assert isinstance(app.sink, DiscardSink)
            assert app.event_bus.get_event_history(EventConstants.SINK_UNAVAILABLE)

            servo = app.connect(14)
            assert servo.move_to(20).wait(timeout=2.0)
            assert servo.position() == pytest.approx(20)

    def test_file_sink(self, write_config, config_data, tmp_path):
        path = tmp_path / "pi-blaster"
        config_data['sink']['path'] = str(path)
        with ServoApplication(write_config(config_data), enable_file_logging=False) as app:
            assert isinstance(app.sink, FileSink)
            app.connect(14, position=180)
            app.dispatcher.flush_now()

        lines = path.read_text(encoding='ascii').splitlines()
        assert "14=0.2500" in lines
        assert lines[-1] == "*=0.0000"

    def test_simulation_mode(self, write_config, config_data):
        config_data['system']['simulation_mode'] = True
        with ServoApplication(write_config(config_data), enable_file_logging=False) as app:
            assert isinstance(app.sink, DiscardSink)

    def test_shutdown_twice(self, config_file):
        app = ServoApplication(config_file, enable_file_logging=False, sink=RecordingSink())
        app.start()
        app.shutdown()
        app.shutdown()
        assert not app.dispatcher.running
