"""
Serial Session
==============

Owns the single live serial connection used by the terminal, its
background reader, and the stream of human readable output lines
(diagnostics, command echoes and data received from the device).
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import serial
import serial.tools.list_ports

from .output import Listener, OutputChannel, Subscription
from .port_selection import LastEnumeratedSelector, PortSelector, port_name
from ..utils.serial_monitor import SerialMonitor

logger = logging.getLogger(__name__)

DEFAULT_BAUD_RATE = 115200
READ_TIMEOUT = 0.1
WRITE_TIMEOUT = 2.0


class SessionStatus(Enum):
    """Serial session states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@dataclass(frozen=True)
class SessionState:
    """Snapshot of the session."""
    connected: bool
    baud_rate: int
    active_port: Optional[str] = None


def _open_serial(port: str, baud_rate: int):
    return serial.Serial(
        port=port,
        baudrate=baud_rate,
        timeout=READ_TIMEOUT,
        write_timeout=WRITE_TIMEOUT,
    )


class SerialSession:
    """Manages one serial connection and its reader thread."""

    def __init__(
        self,
        baud_rate: int = DEFAULT_BAUD_RATE,
        selector: Optional[PortSelector] = None,
        enumerate_ports: Optional[Callable[[], Sequence]] = None,
        serial_factory: Optional[Callable[[str, int], object]] = None,
        log_file: Optional[Path] = None,
        output: Optional[OutputChannel] = None,
    ):
        self.baud_rate = baud_rate
        self.selector = selector or LastEnumeratedSelector()
        self._enumerate_ports = enumerate_ports or serial.tools.list_ports.comports
        self._serial_factory = serial_factory or _open_serial
        self.log_file = log_file
        self.output = output or OutputChannel()

        self._lock = threading.RLock()
        self._status = SessionStatus.DISCONNECTED
        self._port = None
        self._port_name: Optional[str] = None
        self._monitor: Optional[SerialMonitor] = None

    # ------------------------------------------------------------------
    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        return self._status == SessionStatus.CONNECTED

    @property
    def state(self) -> SessionState:
        with self._lock:
            return SessionState(
                connected=self.is_connected,
                baud_rate=self.baud_rate,
                active_port=self._port_name if self.is_connected else None,
            )

    def set_output_listener(self, listener: Listener) -> Subscription:
        """Route all future output to *listener*, replacing the previous one."""
        return self.output.set_primary(listener)

    def subscribe(self, listener: Listener) -> Subscription:
        """Attach an additional output listener."""
        return self.output.subscribe(listener)

    def _emit(self, line: str) -> None:
        self.output.emit(line)

    # ------------------------------------------------------------------
    def list_ports(self) -> List[str]:
        """Return the device paths of the enumerated serial ports."""
        try:
            return [port_name(p) for p in self._enumerate_ports()]
        except Exception as e:
            logger.error(f"Port enumeration failed: {e}")
            return []

    def preview_port(self) -> Optional[str]:
        """Return the port :meth:`connect` would open, without opening it."""
        try:
            chosen = self.selector.select(list(self._enumerate_ports()))
        except Exception as e:
            logger.error(f"Port enumeration failed: {e}")
            return None
        return port_name(chosen) if chosen is not None else None

    def connect(self) -> bool:
        """Open a port chosen by the selector and start the reader."""
        messages: List[str] = []
        try:
            with self._lock:
                connected = self._open_selected_port(messages)
        finally:
            # Listeners may wait on other threads that read the session state
            for line in messages:
                self._emit(line)
        return connected

    def _open_selected_port(self, messages: List[str]) -> bool:
        if self.is_connected:
            messages.append(f"Already connected to {self._port_name}")
            return True

        self._status = SessionStatus.CONNECTING
        try:
            ports = list(self._enumerate_ports())
        except Exception as e:
            logger.error(f"Port enumeration failed: {e}")
            messages.append(f"Failed to enumerate serial ports: {e}")
            self._status = SessionStatus.DISCONNECTED
            return False

        if not ports:
            messages.append("No serial ports found")
            self._status = SessionStatus.DISCONNECTED
            return False

        messages.append(f"Available ports: {', '.join(port_name(p) for p in ports)}")
        chosen = self.selector.select(ports)
        if chosen is None:
            messages.append(f"No matching serial port ({self.selector.description})")
            self._status = SessionStatus.DISCONNECTED
            return False

        name = port_name(chosen)
        try:
            handle = self._serial_factory(name, self.baud_rate)
        except Exception as e:
            logger.error(f"Failed to connect to {name}: {e}")
            messages.append(f"Failed to open {name}: {e}")
            self._status = SessionStatus.DISCONNECTED
            return False

        self._port = handle
        self._port_name = name
        self._status = SessionStatus.CONNECTED
        self._monitor = SerialMonitor(
            handle,
            callback=self._emit,
            on_error=lambda exc, h=handle: self._on_read_error(h, exc),
            log_file=self.log_file,
        )
        self._monitor.start()

        logger.info(f"Connected to {name} at {self.baud_rate} baud")
        messages.append(f"Connected to {name} at {self.baud_rate}")
        return True

    def disconnect(self) -> None:
        """Stop the reader and close the port.  Safe to call repeatedly."""
        with self._lock:
            monitor, self._monitor = self._monitor, None
            handle, self._port = self._port, None
            name, self._port_name = self._port_name, None
            self._status = SessionStatus.DISCONNECTED

        if monitor:
            monitor.stop()
        if handle is not None:
            self._close_handle(handle)
            logger.info(f"Disconnected from {name}")
        self._emit("Disconnected")

    def send_command(self, command: str) -> bool:
        """Write *command* followed by a newline to the open port."""
        with self._lock:
            handle = self._port if self.is_connected else None

        if handle is None:
            self._emit("No port connected")
            return False

        data = f"{command}\n".encode("utf-8")
        try:
            handle.write(data)
            handle.flush()
        except Exception as e:
            logger.error(f"Write error: {e}")
            self._emit(f"Write error: {e}")
            return False

        self._emit(f"Sent: {command}")
        return True

    def set_baud_rate(self, baud_rate: int) -> bool:
        """Change the baud rate, applying it to an open port when possible."""
        if not isinstance(baud_rate, int) or isinstance(baud_rate, bool) or baud_rate <= 0:
            self._emit(f"Invalid baud rate: {baud_rate}")
            return False

        with self._lock:
            self.baud_rate = baud_rate
            handle = self._port if self.is_connected else None

        if handle is not None:
            try:
                handle.baudrate = baud_rate
            except Exception as e:
                logger.warning(f"Failed to apply baud rate live: {e}")
                self._emit(f"Failed to apply baud rate {baud_rate}: {e}")
                return False

        self._emit(f"Baud rate set to {baud_rate}")
        return True

    def reset_device(self) -> bool:
        """Reset the ESP32 by toggling DTR."""
        with self._lock:
            handle = self._port if self.is_connected else None

        if handle is None:
            self._emit("No port connected")
            return False

        try:
            handle.dtr = False
            time.sleep(0.1)
            handle.dtr = True
            time.sleep(0.1)
            handle.dtr = False
        except Exception as e:
            logger.error(f"Failed to reset device: {e}")
            self._emit(f"Reset failed: {e}")
            return False

        self._emit("Device reset")
        return True

    # ------------------------------------------------------------------
    def _on_read_error(self, handle, exc: Exception) -> None:
        """Called from the reader thread when a read fails."""
        self._emit(f"Read error: {exc}")
        with self._lock:
            if self._port is not handle:
                return
            self._port = None
            self._monitor = None
            name, self._port_name = self._port_name, None
            self._status = SessionStatus.DISCONNECTED
        self._close_handle(handle)
        logger.warning(f"Lost connection to {name}")

    @staticmethod
    def _close_handle(handle) -> None:
        try:
            if getattr(handle, 'is_open', True):
                handle.close()
        except Exception:
            logger.debug("Failed to close serial port", exc_info=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.is_connected:
            self.disconnect()


__all__ = ["SerialSession", "SessionState", "SessionStatus", "DEFAULT_BAUD_RATE"]
