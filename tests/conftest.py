import threading
import time
from typing import List, Optional

import pytest


class FakePortInfo:
    """Stand-in for ``serial.tools.list_ports_common.ListPortInfo``."""

    def __init__(self, device: str, vid: Optional[int] = None):
        self.device = device
        self.vid = vid
        self.description = device


class FakeSerialPort:
    """In-memory serial port that behaves like ``serial.Serial`` with a read timeout.

    ``read(size)`` blocks until at least one byte is queued (or the timeout
    passes) and returns at most ``size`` bytes, leaving the rest queued.
    """

    def __init__(self, port: str = "/dev/ttyFAKE0", baudrate: int = 115200,
                 read_error: Optional[Exception] = None, timeout: float = 0.05):
        self.port = port
        self.baudrate = baudrate
        self.timeout = timeout
        self.is_open = True
        self.dtr = False
        self.written: List[bytes] = []
        self.read_error = read_error
        self._incoming = bytearray()
        self._ready = threading.Condition()

    def feed(self, data: bytes) -> None:
        with self._ready:
            self._incoming.extend(data)
            self._ready.notify_all()

    @property
    def in_waiting(self) -> int:
        with self._ready:
            return len(self._incoming)

    def read(self, size: int = 1) -> bytes:
        if not self.is_open:
            raise OSError("port is closed")
        if self.read_error is not None:
            raise self.read_error
        with self._ready:
            if not self._incoming:
                self._ready.wait(self.timeout)
            data = bytes(self._incoming[:size])
            del self._incoming[:size]
        return data

    def write(self, data: bytes) -> int:
        if not self.is_open:
            raise OSError("port is closed")
        self.written.append(data)
        return len(data)

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.is_open = False


def wait_for(condition, timeout: float = 2.0) -> bool:
    start = time.time()
    while time.time() - start < timeout:
        if condition():
            return True
        time.sleep(0.02)
    return False


@pytest.fixture
def fake_port():
    return FakeSerialPort()
