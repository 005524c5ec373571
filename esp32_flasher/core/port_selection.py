"""
Serial port selection strategies.

Port enumeration order is platform dependent, so which port the session
opens is a pluggable policy.  Each selector receives the enumerated ports
(pyserial ``ListPortInfo`` objects or anything with a ``device`` attribute)
and returns the one to open, or ``None``.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

# USB-to-UART bridges commonly found on ESP32 boards
ESP32_VID_PID = [
    (0x10C4, 0xEA60),  # Silicon Labs CP210x
    (0x1A86, 0x7523),  # CH340
    (0x0403, 0x6001),  # FTDI FT232
    (0x1A86, 0x55D4),  # CH9102
    (0x303A, 0x1001),  # Espressif native USB (S2/S3/C3)
]


def port_name(port) -> str:
    """Return the device path of *port* (``ListPortInfo`` or plain string)."""
    return getattr(port, 'device', port)


class PortSelector:
    """Base class for port selection policies."""

    description = "base"

    def select(self, ports: Sequence):
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.description})"


class LastEnumeratedSelector(PortSelector):
    """Pick the last enumerated port.

    A heuristic carried over from the desktop app: on most hosts the USB
    adapter enumerates after built-in ports.  It is not guaranteed to be the
    right device.
    """

    description = "last"

    def select(self, ports: Sequence):
        return ports[-1] if ports else None


class ExplicitPortSelector(PortSelector):
    """Pick the port whose device path matches *name*."""

    def __init__(self, name: str):
        self.name = name
        self.description = f"name:{name}"

    def select(self, ports: Sequence):
        for port in ports:
            if port_name(port) == self.name:
                return port
        return None


class VendorIdSelector(PortSelector):
    """Pick the first port whose USB vendor id is one of *vendor_ids*."""

    def __init__(self, vendor_ids: Iterable[int]):
        self.vendor_ids: Tuple[int, ...] = tuple(vendor_ids)
        self.description = "vid:" + ",".join(f"{vid:04x}" for vid in self.vendor_ids)

    def select(self, ports: Sequence):
        for port in ports:
            if getattr(port, 'vid', None) in self.vendor_ids:
                return port
        return None


def create_selector(policy: Optional[str]) -> PortSelector:
    """Build a selector from a config string.

    Accepted forms: ``last``, ``name:<device>``, ``vid:<hex>[,<hex>...]`` and
    ``esp32`` (vendor ids of the usual ESP32 USB bridges).
    """
    policy = (policy or "last").strip()
    if policy == "last":
        return LastEnumeratedSelector()
    if policy == "esp32":
        return VendorIdSelector(sorted({vid for vid, _ in ESP32_VID_PID}))
    if policy.startswith("name:") and policy[5:]:
        return ExplicitPortSelector(policy[5:])
    if policy.startswith("vid:") and policy[4:]:
        try:
            vendor_ids = [int(part, 16) for part in policy[4:].split(",") if part]
        except ValueError as e:
            raise ValueError(f"Invalid vendor id in port policy {policy!r}") from e
        return VendorIdSelector(vendor_ids)
    raise ValueError(f"Unknown port selection policy: {policy!r}")


__all__ = [
    "PortSelector",
    "LastEnumeratedSelector",
    "ExplicitPortSelector",
    "VendorIdSelector",
    "create_selector",
    "port_name",
    "ESP32_VID_PID",
]
