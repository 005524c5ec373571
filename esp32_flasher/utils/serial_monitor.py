"""Serial reader for ESP32 devices.

This module provides :class:`SerialMonitor`, a small helper that reads
from an open serial port in a background thread.  Each burst of bytes that
arrives together is decoded as text and handed to a callback as one line.
Lines can optionally be timestamped and appended to a log file.

The monitor blocks on the port's read timeout instead of sleeping between
polls, and stops when :py:meth:`stop` sets its stop event.  It works with
``serial.Serial`` or any object that implements ``read`` and ``in_waiting``.
"""

from __future__ import annotations

from datetime import datetime
import threading
import time
from pathlib import Path
from typing import Callable, Optional, TextIO
import logging


logger = logging.getLogger(__name__)

MAX_CHUNK = 1024
# Pause after the first byte of a burst so the rest of it is read together
SETTLE_TIME = 0.01


class SerialMonitor:
    """Continuously read from a serial port.

    Parameters
    ----------
    port:
        An open ``serial.Serial`` (configured with a short read timeout) or
        any object providing ``read`` and ``in_waiting``.
    callback:
        Function called with each decoded burst of text.
    on_error:
        Optional function called with the exception that ended the loop.
    log_file:
        Optional path to a log file.  If provided, all received text is
        appended to the file with a timestamp.
    """

    def __init__(
        self,
        port,
        callback: Callable[[str], None],
        on_error: Optional[Callable[[Exception], None]] = None,
        log_file: Optional[Path] = None,
    ) -> None:
        self.port = port
        self.callback = callback
        self.on_error = on_error
        self.log_file_path = Path(log_file) if log_file else None

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._log_handle: Optional[TextIO] = None

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    # ------------------------------------------------------------------
    def start(self) -> None:
        """Start reading from the port."""

        if self.running:
            return

        if self.log_file_path:
            self.log_file_path.parent.mkdir(parents=True, exist_ok=True)
            self._log_handle = self.log_file_path.open("a", encoding="utf-8")

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._read_loop, name="serial-reader", daemon=True
        )
        self._thread.start()

    # ------------------------------------------------------------------
    def stop(self, timeout: float = 1.0) -> None:
        """Signal the reader to stop, wait for it and clean up resources."""

        self._stop_event.set()
        thread = self._thread
        if thread and thread is not threading.current_thread():
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Serial reader did not stop within %.1fs", timeout)
        self._thread = None
        self._close_log()

    # ------------------------------------------------------------------
    def _read_loop(self) -> None:
        """Background thread that reads and forwards serial data."""

        while not self._stop_event.is_set():
            try:
                data = self._read_burst()
            except Exception as exc:
                if self._stop_event.is_set():
                    # Port closed underneath us during shutdown
                    break
                logger.error(f"Serial read failed: {exc}")
                self._report_error(exc)
                break

            if not data or self._stop_event.is_set():
                continue

            text = data.decode("utf-8", errors="replace").rstrip("\r\n")
            if not text:
                continue

            try:
                self.callback(text)
            except Exception:
                logger.debug("Serial monitor callback failed", exc_info=True)

            self._write_log(text)

        self._close_log()

    def _read_burst(self) -> bytes:
        """Block for the first byte, then collect the rest of the burst.

        ``read(1)`` returns as soon as one byte arrives, so whatever follows
        it is drained until the port stays quiet for :data:`SETTLE_TIME`.
        """
        waiting = self.port.in_waiting
        data = self.port.read(min(max(1, waiting), MAX_CHUNK))
        while data and len(data) < MAX_CHUNK and not self._stop_event.is_set():
            time.sleep(SETTLE_TIME)
            waiting = self.port.in_waiting
            if not waiting:
                break
            data += self.port.read(min(waiting, MAX_CHUNK - len(data)))
        return data

    def _report_error(self, exc: Exception) -> None:
        if self.on_error is None:
            return
        try:
            self.on_error(exc)
        except Exception:
            logger.debug("Serial monitor error hook failed", exc_info=True)

    def _write_log(self, text: str) -> None:
        if not self._log_handle:
            return
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        try:
            self._log_handle.write(f"[{timestamp}] {text}\n")
            self._log_handle.flush()
        except (OSError, ValueError):
            logger.debug("Failed to write serial log", exc_info=True)

    def _close_log(self) -> None:
        handle, self._log_handle = self._log_handle, None
        if handle:
            try:
                handle.close()
            except OSError:
                logger.debug("Failed to close log file", exc_info=True)


__all__ = ["SerialMonitor"]
