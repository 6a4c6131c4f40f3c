"""
Output Sinks

A sink accepts newline-terminated ASCII command lines produced by the
dispatcher. ``FileSink`` writes to a file or FIFO (normally the
pi-blaster pipe); ``DiscardSink`` drops everything and reports itself
as unavailable so callers can tell the degraded mode apart explicitly.

Author: Servo System Development
Created: October 2026
"""

import logging
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Union

from piservo.core.events import EventBus, EventConstants, EventPriority
from piservo.core.exceptions import SinkUnavailableError, SinkWriteError

logger = logging.getLogger(__name__)

DEFAULT_SINK_PATH = "/dev/pi-blaster"


class Sink(ABC):
    """Abstract output sink"""

    #: False when writes go nowhere
    available: bool = True

    @abstractmethod
    def write(self, line: str):
        """
        Write one command line (without trailing newline)

        Raises:
            SinkWriteError: If the backing resource rejects the write
        """
        pass

    def close(self):
        """Release the backing resource"""
        pass


class DiscardSink(Sink):
    """Sink used when no daemon is present; writes are silently dropped"""

    available = False

    def write(self, line: str):
        pass

    def __repr__(self):
        return "DiscardSink()"


class FileSink(Sink):
    """
    Sink writing to a file or named pipe

    The file is opened write-only at construction so a missing daemon
    is detected once at startup rather than on every write.
    """

    def __init__(self, path: Union[str, Path] = DEFAULT_SINK_PATH):
        self.path = Path(path)
        self._lock = threading.Lock()
        try:
            # Text mode, line buffered; a FIFO blocks here until a reader exists
            self._file = open(self.path, 'w', buffering=1, encoding='ascii')
        except (FileNotFoundError, PermissionError, IsADirectoryError) as e:
            raise SinkUnavailableError(
                f"Cannot open output sink {self.path}: {e}", module="sink"
            ) from e

        logger.info(f"Output sink opened: {self.path}")

    def write(self, line: str):
        with self._lock:
            if self._file is None:
                raise SinkWriteError(f"Output sink {self.path} is closed", module="sink")
            try:
                self._file.write(f"{line}\n")
                self._file.flush()
            except OSError as e:
                raise SinkWriteError(f"Write to {self.path} failed: {e}", module="sink") from e

    def close(self):
        with self._lock:
            if self._file is not None:
                try:
                    self._file.close()
                except OSError as e:
                    logger.warning(f"Error closing output sink {self.path}: {e}")
                self._file = None
                logger.info(f"Output sink closed: {self.path}")

    def __repr__(self):
        return f"FileSink({str(self.path)!r})"


class RecordingSink(Sink):
    """In-memory sink keeping every written line; used for dry runs and tests"""

    def __init__(self):
        self._lock = threading.Lock()
        self._lines: List[str] = []

    def write(self, line: str):
        with self._lock:
            self._lines.append(line)

    @property
    def lines(self) -> List[str]:
        with self._lock:
            return list(self._lines)

    def clear(self):
        with self._lock:
            self._lines.clear()


def open_sink(path: Union[str, Path] = DEFAULT_SINK_PATH, simulation: bool = False,
              event_bus: Optional[EventBus] = None) -> Sink:
    """
    Open the output sink, degrading to discard mode if it is unavailable

    Args:
        path: File or FIFO to write commands to
        simulation: Skip opening and discard all output
        event_bus: Optional bus notified when the sink is unavailable

    Returns:
        A FileSink, or a DiscardSink when the resource is missing
    """
    if simulation:
        logger.info("Simulation mode: servo output will be discarded")
        return DiscardSink()

    try:
        return FileSink(path)
    except SinkUnavailableError as e:
        logger.warning(f"{e} (servos will continue with output disabled)")
        if event_bus is not None:
            event_bus.publish(
                EventConstants.SINK_UNAVAILABLE,
                {'path': str(path), 'error': str(e)},
                source_module="sink",
                priority=EventPriority.HIGH
            )
        return DiscardSink()
