"""
Servo System Application

Composition root: loads configuration, sets up logging, opens the output
sink and owns the dispatcher that every servo it connects is bound to.

Example:
    with ServoApplication("config/servo_config.yaml") as app:
        pan = app.connect(14)
        pan.move_to(90).wait()

Author: Servo System Development
Created: October 2026
"""

import logging
import threading
from pathlib import Path
from typing import Dict, List, Optional, Union

from piservo.core.config_manager import ConfigManager, ServoConfig
from piservo.core.events import EventBus
from piservo.core.exceptions import ConfigurationError, ServoSystemError
from piservo.core.logging_setup import setup_logging
from piservo.motion.dispatcher import ServoDispatcher
from piservo.motion.servo import Servo, ServoFlags, connect
from piservo.motion.sink import Sink, open_sink

logger = logging.getLogger(__name__)


def flags_from_names(names: List[str]) -> ServoFlags:
    """['centered', 'normalized'] -> ServoFlags.CENTERED | ServoFlags.NORMALIZED"""
    flags = ServoFlags.NONE
    for name in names:
        try:
            flags |= ServoFlags[name.upper()]
        except KeyError:
            raise ConfigurationError(f"Unknown servo flag: {name}")
    return flags


class ServoApplication:
    """Owns the sink, dispatcher and servos of one process"""

    def __init__(self, config_file: Union[str, Path],
                 log_dir: Optional[Path] = None,
                 enable_file_logging: bool = True,
                 sink: Optional[Sink] = None):
        self.config = ConfigManager(config_file)
        self._log_dir = log_dir
        self._enable_file_logging = enable_file_logging
        self._sink_override = sink

        self.event_bus = EventBus()
        self.sink: Optional[Sink] = None
        self.dispatcher: Optional[ServoDispatcher] = None
        self.servos: Dict[int, Servo] = {}
        self._lock = threading.Lock()
        self.running = False

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown()

    def start(self) -> 'ServoApplication':
        """Initialize logging, the sink and the dispatcher"""
        if self.running:
            return self

        setup_logging(self.config.get_log_level(), log_dir=self._log_dir,
                      enable_file=self._enable_file_logging)
        logger.info("=== Servo System Starting ===")
        logger.debug(f"Configuration: {self.config.get_summary()}")

        sink_config = self.config.get_sink_config()
        if self._sink_override is not None:
            self.sink = self._sink_override
        else:
            self.sink = open_sink(sink_config.path, simulation=sink_config.simulation,
                                  event_bus=self.event_bus)

        self.dispatcher = ServoDispatcher.from_config(
            self.config.get_dispatcher_config(),
            sink=self.sink,
            precision=sink_config.precision,
            event_bus=self.event_bus
        ).start()

        self.running = True
        logger.info("Servo system started")
        return self

    def connect(self, channel: int, servo_config: Optional[ServoConfig] = None, **overrides) -> Servo:
        """
        Connect a servo using the configured defaults

        Args:
            channel: Output channel
            servo_config: Settings to use instead of the 'servo' defaults
            **overrides: Keyword overrides forwarded to ``connect()``

        A servo this application already connected on the channel is
        closed first.

        Raises:
            ChannelInUseError: If a servo connected elsewhere owns the channel
        """
        if not self.running:
            raise ServoSystemError("Servo system not started", module="application")

        cfg = servo_config or self.config.get_servo_config()
        options = {
            'name': cfg.name,
            'flags': flags_from_names(cfg.flags),
            'min_pulse': cfg.min_pulse,
            'max_pulse': cfg.max_pulse,
            'max_speed': cfg.max_speed,
            'update_interval': cfg.update_interval,
            'position': cfg.position,
            'speed': cfg.speed,
            'event_bus': self.event_bus,
        }
        options.update(overrides)

        with self._lock:
            previous = self.servos.pop(channel, None)
        if previous is not None:
            logger.info(f"Replacing {previous.name} on channel {channel}")
            previous.close()

        servo = connect(channel, self.dispatcher, **options)
        with self._lock:
            self.servos[channel] = servo
        return servo

    def connect_configured(self) -> Dict[str, Servo]:
        """Connect every servo listed under 'servos' in the configuration"""
        connected = {}
        for name, cfg in self.config.get_all_servos().items():
            connected[name] = self.connect(cfg.channel, servo_config=cfg)
        return connected

    def shutdown(self):
        """Close every servo, then the dispatcher, then the sink"""
        if not self.running:
            return

        logger.info("=== Servo system shutting down ===")
        self.running = False

        with self._lock:
            servos, self.servos = list(self.servos.values()), {}
        for servo in servos:
            servo.close()

        self.dispatcher.shutdown()
        self.sink.close()
        logger.info("Servo system shutdown complete")
