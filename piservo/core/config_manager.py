"""
Configuration Manager for Servo System

Handles loading, validation, and management of system configuration
from YAML files. Provides typed access to the sink, dispatcher and
servo sections with environment variable overrides.

Author: Servo System Development
Created: October 2026
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .exceptions import (
    ConfigurationError,
    ConfigurationNotFoundError,
    ConfigurationValidationError
)

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
VALID_FLAGS = ['centered', 'normalized']


@dataclass
class SinkConfig:
    """Output sink configuration"""
    path: str = "/dev/pi-blaster"
    precision: int = 4
    simulation: bool = False


@dataclass
class DispatcherConfig:
    """Dispatcher cadence configuration (seconds)"""
    flush_interval: float = 0.04
    sample_base: float = 0.005
    sample_scale: float = 0.010
    backoff_initial: float = 0.05
    backoff_max: float = 2.0


@dataclass
class ServoConfig:
    """Defaults applied to every servo, or one configured servo"""
    channel: Optional[int] = None
    name: Optional[str] = None
    max_speed: float = 315.7
    update_interval: float = 0.003
    min_pulse: float = 0.05
    max_pulse: float = 0.25
    speed: float = 1.0
    position: float = 0.0
    flags: List[str] = field(default_factory=list)


class ConfigManager:
    """
    Centralized configuration management for the servo system

    Features:
    - YAML configuration file loading
    - Dot-notation and typed configuration access
    - Configuration validation
    - Environment variable overrides
    - Configuration change detection
    """

    def __init__(self, config_file: Union[str, Path]):
        self.config_file = Path(config_file)
        self._config_data: Dict[str, Any] = {}
        self._file_mtime: Optional[float] = None
        self._validated = False

        self.reload()

    def reload(self) -> bool:
        """
        Reload configuration from file

        Returns:
            True if reload successful
        """
        try:
            if not self.config_file.exists():
                raise ConfigurationNotFoundError(
                    f"Configuration file not found: {self.config_file}"
                )

            current_mtime = self.config_file.stat().st_mtime
            if self._file_mtime == current_mtime and self._config_data:
                logger.debug("Configuration file unchanged, skipping reload")
                return True

            with open(self.config_file, 'r', encoding='utf-8') as file:
                self._config_data = yaml.safe_load(file) or {}

            self._file_mtime = current_mtime
            self._validated = False

            self._apply_env_overrides()
            self.validate()

            logger.info(f"Configuration loaded from {self.config_file}")
            return True

        except ConfigurationError:
            raise
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {self.config_file}: {e}")
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}")

    def _apply_env_overrides(self):
        """Apply environment variable overrides to configuration"""
        env_mappings = {
            'PISERVO_LOG_LEVEL': 'system.log_level',
            'PISERVO_SIMULATION': 'system.simulation_mode',
            'PISERVO_SINK_PATH': 'sink.path',
            'PISERVO_FLUSH_INTERVAL': 'dispatcher.flush_interval',
        }

        for env_var, config_path in env_mappings.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                self._set_nested_value(config_path, env_value)
                logger.debug(f"Applied environment override: {config_path} = {env_value}")

    def _set_nested_value(self, path: str, value: Any):
        """Set a nested configuration value using dot notation"""
        keys = path.split('.')
        current = self._config_data

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        # Convert string values to appropriate types
        if isinstance(value, str):
            if value.lower() in ('true', 'false'):
                value = value.lower() == 'true'
            elif value.isdigit():
                value = int(value)
            elif value.replace('.', '', 1).isdigit():
                value = float(value)

        current[keys[-1]] = value

    def validate(self) -> bool:
        """
        Validate configuration values

        Returns:
            True if validation successful

        Raises:
            ConfigurationValidationError: If validation fails
        """
        self._validate_system_config()
        self._validate_sink_config()
        self._validate_dispatcher_config()
        self._validate_servo_config()

        self._validated = True
        logger.debug("Configuration validation successful")
        return True

    def _validate_system_config(self):
        """Validate system configuration section"""
        log_level = self.get('system.log_level')
        if not log_level:
            raise ConfigurationValidationError("Missing required field: system.log_level")

        if str(log_level).upper() not in VALID_LOG_LEVELS:
            raise ConfigurationValidationError(
                f"Invalid log level '{log_level}'. Must be one of: {VALID_LOG_LEVELS}"
            )

    def _validate_sink_config(self):
        """Validate output sink configuration"""
        precision = self.get('sink.precision', SinkConfig.precision)
        if not isinstance(precision, int) or not 2 <= precision <= 6:
            raise ConfigurationValidationError(
                f"Invalid sink precision {precision}. Must be an integer between 2-6"
            )

    def _validate_dispatcher_config(self):
        """Validate dispatcher cadence configuration"""
        dispatcher = self.get('dispatcher', {}) or {}

        flush_interval = dispatcher.get('flush_interval', DispatcherConfig.flush_interval)
        if not _is_number(flush_interval) or flush_interval <= 0:
            raise ConfigurationValidationError(
                f"Invalid dispatcher.flush_interval {flush_interval}. Must be > 0"
            )

        for key in ('sample_base', 'sample_scale', 'backoff_initial', 'backoff_max'):
            value = dispatcher.get(key, getattr(DispatcherConfig, key))
            if not _is_number(value) or value < 0:
                raise ConfigurationValidationError(
                    f"Invalid dispatcher.{key} {value}. Must be >= 0"
                )

    def _validate_servo_config(self):
        """Validate servo defaults and per-servo entries"""
        self._validate_servo_entry('servo', self.get('servo', {}) or {})

        channels = {}
        for name, entry in (self.get('servos', {}) or {}).items():
            if not isinstance(entry, dict) or 'channel' not in entry:
                raise ConfigurationValidationError(f"Missing field 'channel' in servos.{name}")

            channel = entry['channel']
            if not isinstance(channel, int) or isinstance(channel, bool):
                raise ConfigurationValidationError(f"Invalid channel {channel!r} in servos.{name}")
            if channel in channels:
                raise ConfigurationValidationError(
                    f"Channel {channel} used by both servos.{channels[channel]} and servos.{name}"
                )
            channels[channel] = name

            self._validate_servo_entry(f"servos.{name}", entry)

    def _validate_servo_entry(self, section: str, entry: Dict[str, Any]):
        for key in ('max_speed', 'update_interval'):
            if key in entry and (not _is_number(entry[key]) or entry[key] <= 0):
                raise ConfigurationValidationError(f"Invalid {section}.{key} {entry[key]}. Must be > 0")

        for key in ('speed', 'position'):
            if key in entry and not _is_number(entry[key]):
                raise ConfigurationValidationError(f"Invalid {section}.{key} {entry[key]!r}. Must be a number")

        min_pulse = entry.get('min_pulse', self.get('servo.min_pulse', ServoConfig.min_pulse))
        max_pulse = entry.get('max_pulse', self.get('servo.max_pulse', ServoConfig.max_pulse))
        if not (_is_number(min_pulse) and _is_number(max_pulse)):
            raise ConfigurationValidationError(f"Invalid pulse bounds in {section}")
        if not 0 <= min_pulse < max_pulse <= 1:
            raise ConfigurationValidationError(
                f"Invalid pulse bounds in {section}: need 0 <= min_pulse < max_pulse <= 1"
            )

        for flag in entry.get('flags', []) or []:
            if str(flag).lower() not in VALID_FLAGS:
                raise ConfigurationValidationError(
                    f"Unknown flag '{flag}' in {section}. Must be one of: {VALID_FLAGS}"
                )

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation

        Args:
            key: Configuration key in dot notation (e.g., 'sink.path')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        try:
            value = self._config_data
            for k in key.split('.'):
                value = value[k]
            return value

        except (KeyError, TypeError):
            return default

    def get_sink_config(self) -> SinkConfig:
        """Get typed sink configuration"""
        return SinkConfig(
            path=str(self.get('sink.path', SinkConfig.path)),
            precision=int(self.get('sink.precision', SinkConfig.precision)),
            simulation=self.is_simulation_mode()
        )

    def get_dispatcher_config(self) -> DispatcherConfig:
        """Get typed dispatcher configuration"""
        data = self.get('dispatcher', {}) or {}
        return DispatcherConfig(
            flush_interval=float(data.get('flush_interval', DispatcherConfig.flush_interval)),
            sample_base=float(data.get('sample_base', DispatcherConfig.sample_base)),
            sample_scale=float(data.get('sample_scale', DispatcherConfig.sample_scale)),
            backoff_initial=float(data.get('backoff_initial', DispatcherConfig.backoff_initial)),
            backoff_max=float(data.get('backoff_max', DispatcherConfig.backoff_max))
        )

    def get_servo_config(self, servo_name: Optional[str] = None) -> ServoConfig:
        """
        Get typed servo configuration

        Args:
            servo_name: Entry under 'servos' to merge over the defaults,
                or None for the defaults alone
        """
        data = dict(self.get('servo', {}) or {})
        if servo_name is not None:
            entry = self.get(f'servos.{servo_name}')
            if not entry:
                raise ConfigurationError(f"Servo configuration not found: {servo_name}")
            data.update(entry)
            data.setdefault('name', servo_name)

        return ServoConfig(
            channel=data.get('channel'),
            name=data.get('name'),
            max_speed=float(data.get('max_speed', ServoConfig.max_speed)),
            update_interval=float(data.get('update_interval', ServoConfig.update_interval)),
            min_pulse=float(data.get('min_pulse', ServoConfig.min_pulse)),
            max_pulse=float(data.get('max_pulse', ServoConfig.max_pulse)),
            speed=float(data.get('speed', ServoConfig.speed)),
            position=float(data.get('position', ServoConfig.position)),
            flags=[str(flag).lower() for flag in data.get('flags', []) or []]
        )

    def get_all_servos(self) -> Dict[str, ServoConfig]:
        """Get all configured servos"""
        return {
            servo_name: self.get_servo_config(servo_name)
            for servo_name in (self.get('servos', {}) or {}).keys()
        }

    def get_log_level(self) -> str:
        return str(self.get('system.log_level', 'INFO')).upper()

    def is_simulation_mode(self) -> bool:
        """Check if output should be discarded instead of written"""
        return bool(self.get('system.simulation_mode', False))

    def has_changed(self) -> bool:
        """Check if configuration file has changed since last load"""
        if not self.config_file.exists():
            return False

        return self.config_file.stat().st_mtime != self._file_mtime

    def get_summary(self) -> Dict[str, Any]:
        """Get configuration summary for logging/debugging"""
        return {
            'config_file': str(self.config_file),
            'validated': self._validated,
            'simulation_mode': self.is_simulation_mode(),
            'log_level': self.get_log_level(),
            'sink_path': self.get_sink_config().path,
            'flush_interval': self.get_dispatcher_config().flush_interval,
            'servo_count': len(self.get('servos', {}) or {}),
        }


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
