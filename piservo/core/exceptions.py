"""
Custom Exception Classes for Servo System

Defines hierarchical exception classes for the errors that can occur
while driving servos through the output sink. Out-of-range targets,
speeds and positions are never errors: they are clamped.

Author: Servo System Development
Created: October 2026
"""

from typing import Optional


class ServoSystemError(Exception):
    """Base exception for all servo system errors"""

    def __init__(self, message: str, error_code: Optional[str] = None, module: Optional[str] = None):
        self.message = message
        self.error_code = error_code
        self.module = module
        super().__init__(self.message)

    def __str__(self):
        parts = [self.message]
        if self.module:
            parts.append(f"Module: {self.module}")
        if self.error_code:
            parts.append(f"Code: {self.error_code}")
        return " | ".join(parts)


# Configuration Errors
class ConfigurationError(ServoSystemError):
    """Raised when configuration is invalid or missing"""
    pass


class ConfigurationNotFoundError(ConfigurationError):
    """Raised when configuration file is not found"""
    pass


class ConfigurationValidationError(ConfigurationError):
    """Raised when configuration values are invalid"""
    pass


# Output Sink Errors
class SinkError(ServoSystemError):
    """Base class for output sink errors"""
    pass


class SinkUnavailableError(SinkError):
    """Raised when the sink's backing resource is missing at startup"""
    pass


class SinkWriteError(SinkError):
    """Raised when a write to an established sink fails"""
    pass


# Dispatcher Errors
class DispatcherError(ServoSystemError):
    """Base class for dispatcher errors"""
    pass


class DispatcherShutdownError(DispatcherError):
    """Raised when the dispatcher is used after shutdown"""
    pass


class ChannelInUseError(DispatcherError):
    """Raised when a servo subscribes on a channel another live servo owns"""
    pass


# Servo Errors
class ServoError(ServoSystemError):
    """Base class for servo errors"""
    pass


class ServoClosedError(ServoError):
    """Raised when a closed servo is commanded"""
    pass

