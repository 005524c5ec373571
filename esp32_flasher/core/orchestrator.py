"""
Session Orchestrator
====================

Ties the serial session, the firmware provisioner and the command registry
together into the user workflow: pick a device, download and flash its
firmware, then talk to it over the serial terminal.  Everything shown to
the user ends up in the :class:`Transcript`.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, List, Optional

from .command_registry import CommandRegistry, CustomCommand
from .flasher import FlashResult
from .manifest import DeviceDescriptor, fetch_manifest
from .provisioner import FirmwareProvisioner
from .serial_session import SerialSession

logger = logging.getLogger(__name__)

TRANSCRIPT_GREETING = "Terminal ready..."

Observer = Callable[[str, Any], None]


class Transcript:
    """Append-only, thread-safe list of lines shown to the user."""

    def __init__(self, initial: Optional[List[str]] = None):
        self._lines: List[str] = list(initial or [])
        self._lock = threading.Lock()
        self._listeners: List[Callable[[str], None]] = []

    def append(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(line)
            except Exception:
                logger.warning("Transcript listener failed", exc_info=True)

    def add_listener(self, listener: Callable[[str], None]) -> None:
        with self._lock:
            self._listeners.append(listener)

    def attach(self, listener: Callable[[str], None]) -> List[str]:
        """Register *listener* and return the lines appended before it.

        Every line ends up either in the returned snapshot or delivered to
        *listener*, never both.
        """
        with self._lock:
            self._listeners.append(listener)
            return list(self._lines)

    def remove_listener(self, listener: Callable[[str], None]) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def lines(self, start: int = 0) -> List[str]:
        """Return a copy of the lines from index *start* onward."""
        with self._lock:
            return self._lines[start:]

    def __len__(self) -> int:
        with self._lock:
            return len(self._lines)

    def __iter__(self):
        return iter(self.lines())


class SessionOrchestrator:
    """Coordinates device selection, flashing and the serial terminal."""

    def __init__(
        self,
        serial_session: SerialSession,
        provisioner: FirmwareProvisioner,
        registry: CommandRegistry,
        manifest_url: Optional[str] = None,
    ):
        self.serial = serial_session
        self.provisioner = provisioner
        self.registry = registry
        self.manifest_url = manifest_url or provisioner.config.manifest_url

        self.transcript = Transcript([TRANSCRIPT_GREETING])
        self.devices: List[DeviceDescriptor] = []
        self.selected_device: Optional[str] = None
        self.commands: List[CustomCommand] = []

        self._busy = False
        self._busy_lock = threading.Lock()
        self._observers: List[Observer] = []
        self._serial_subscription = None

    # ------------------------------------------------------------------
    def add_observer(self, callback: Observer):
        """Add observer for workflow events."""
        self._observers.append(callback)

    def _notify_observers(self, event: str, payload: Any = None):
        for callback in list(self._observers):
            try:
                callback(event, payload)
            except Exception as e:
                logger.warning(f"Observer callback failed: {e}")

    def _append(self, line: str) -> None:
        self.transcript.append(line)

    @property
    def is_busy(self) -> bool:
        """True while a firmware installation is running."""
        return self._busy

    @property
    def baud_rate(self) -> int:
        return self.serial.baud_rate

    def _set_busy(self, value: bool) -> None:
        self._busy = value
        self._notify_observers('busy_changed', value)

    # ------------------------------------------------------------------
    def attach_serial(self, auto_connect: bool = True) -> None:
        """Send serial output to the transcript and try to connect."""
        if self._serial_subscription is None:
            self._serial_subscription = self.serial.set_output_listener(self._append)
        self.commands = self.registry.list()
        if auto_connect:
            self.connect()

    def connect(self) -> bool:
        try:
            return self.serial.connect()
        except Exception as e:
            logger.exception("Unexpected error while connecting")
            self._append(f"Connection error: {e}")
            return False

    def disconnect(self) -> None:
        self.serial.disconnect()

    def set_baud_rate(self, baud_rate: int) -> bool:
        return self.serial.set_baud_rate(baud_rate)

    def reset_device(self) -> bool:
        return self.serial.reset_device()

    # ------------------------------------------------------------------
    def load_devices(self, force: bool = False) -> List[DeviceDescriptor]:
        """Fetch the manifest once (or again when *force* is set)."""
        if self.devices and not force:
            return self.devices

        try:
            devices = fetch_manifest(self.manifest_url, self.provisioner.downloader)
        except Exception as e:
            logger.exception("Manifest loading failed")
            self._append(f"Error loading manifest: {e}")
            return self.devices

        if not devices:
            self._append("No devices found in manifest")
        self.devices = devices
        self._notify_observers('devices_loaded', devices)
        return devices

    def find_device(self, device_id: str) -> Optional[DeviceDescriptor]:
        for device in self.devices:
            if device.id == device_id:
                return device
        return None

    def select_device(self, device_id: str) -> bool:
        """Remember *device_id* as the install target."""
        device_id = (device_id or "").strip()
        if not device_id:
            self._append("No device selected")
            return False
        if self.devices and self.find_device(device_id) is None:
            logger.warning(f"Device '{device_id}' is not listed in the manifest")
        self.selected_device = device_id
        self._append(f"> Selected device: {device_id}")
        return True

    # ------------------------------------------------------------------
    def install_firmware(self, device_id: Optional[str] = None) -> FlashResult:
        """Download and flash firmware for *device_id* (or the selected device).

        The busy indicator is set for the duration of the call and cleared
        on every exit path.  A rejected request leaves the selection alone.
        """
        with self._busy_lock:
            busy = self._busy
            if not busy:
                if device_id is not None:
                    target = device_id.strip()
                else:
                    target = self.selected_device
                if target:
                    self._set_busy(True)

        if busy:
            self._append("Installation already in progress")
            return FlashResult.error("Installation already in progress")
        if not target:
            self._append("No device selected")
            return FlashResult.error("No device selected")

        try:
            if device_id is not None:
                self.select_device(target)
            if self.serial.is_connected:
                # esptool needs exclusive access to the port
                self._append("Releasing serial port for flashing")
                self.serial.disconnect()
            self._append("Starting firmware download...")
            result = self.provisioner.fetch_and_flash(target, self.baud_rate, self._append)
            self._append(str(result))
            if result.success:
                logger.info(f"Firmware installed on {target}")
                self._notify_observers('install_complete', target)
            return result
        except Exception as e:
            logger.exception("Firmware installation failed")
            self._append(f"Error: {e}")
            return FlashResult.error(str(e))
        finally:
            with self._busy_lock:
                self._set_busy(False)

    def install_firmware_async(self, device_id: Optional[str] = None,
                               on_done: Optional[Callable[[FlashResult], None]] = None
                               ) -> threading.Thread:
        """Run :meth:`install_firmware` on a worker thread."""
        def worker():
            result = self.install_firmware(device_id)
            if on_done:
                try:
                    on_done(result)
                except Exception:
                    logger.warning("Install completion callback failed", exc_info=True)

        thread = threading.Thread(target=worker, name="firmware-install", daemon=True)
        thread.start()
        return thread

    # ------------------------------------------------------------------
    def send_command(self, text: str) -> bool:
        self._append(f"> {text}")
        return self.serial.send_command(text)

    def custom_commands(self) -> List[CustomCommand]:
        return list(self.commands)

    def add_custom_command(self, name: str, command: str) -> CustomCommand:
        record = self.registry.create(name, command)
        self.commands = self.registry.list()
        return record

    def delete_custom_command(self, command_id: str) -> None:
        self.registry.delete(command_id)
        self.commands = self.registry.list()

    def run_custom_command(self, command_id: str) -> bool:
        record = self.registry.get(command_id)
        if record is None:
            self._append(f"Unknown command id: {command_id}")
            return False
        return self.send_command(record.command)

    def close(self) -> None:
        if self.serial.is_connected:
            self.serial.disconnect()
        if self._serial_subscription is not None:
            self._serial_subscription.close()
            self._serial_subscription = None


__all__ = ["SessionOrchestrator", "Transcript", "TRANSCRIPT_GREETING"]
