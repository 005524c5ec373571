"""
Firmware Flasher
================

Runs the external flashing tool (esptool) as a subprocess, streams its
output line by line and turns the process outcome into a
:class:`FlashResult`.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import sys
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Sequence

logger = logging.getLogger(__name__)

LineCallback = Callable[[str], None]

DEFAULT_TOOL_COMMAND = [sys.executable, "-m", "esptool"]


class FlashOutcome(Enum):
    """How a flash attempt ended."""
    SUCCESS = "success"
    FAILED = "failed"
    ERROR = "error"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class FlashResult:
    """Result of a flash attempt."""
    outcome: FlashOutcome
    exit_code: Optional[int] = None
    message: str = ""

    @classmethod
    def succeeded(cls) -> FlashResult:
        return cls(FlashOutcome.SUCCESS, exit_code=0)

    @classmethod
    def failed(cls, exit_code: int) -> FlashResult:
        return cls(FlashOutcome.FAILED, exit_code=exit_code)

    @classmethod
    def error(cls, message: str) -> FlashResult:
        return cls(FlashOutcome.ERROR, message=message)

    @classmethod
    def timed_out(cls, seconds: float) -> FlashResult:
        return cls(FlashOutcome.TIMED_OUT, message=f"{seconds:g}")

    @property
    def success(self) -> bool:
        return self.outcome == FlashOutcome.SUCCESS

    def __str__(self) -> str:
        if self.outcome == FlashOutcome.SUCCESS:
            return "Success"
        if self.outcome == FlashOutcome.FAILED:
            return f"Failed with exit code {self.exit_code}"
        if self.outcome == FlashOutcome.TIMED_OUT:
            return f"Timed out after {self.message} seconds"
        return f"Error: {self.message}"

    def to_dict(self):
        return {
            'outcome': self.outcome.value,
            'exit_code': self.exit_code,
            'message': str(self),
            'success': self.success,
        }


@dataclass
class FlashJob:
    """One flash request, kept only for the duration of the flash."""
    device_id: str
    firmware_url: str
    local_path: Optional[Path] = None
    tool_arguments: List[str] = field(default_factory=list)
    exit_status: Optional[FlashResult] = None


def build_tool_arguments(firmware_path: Path, baud_rate: int,
                         chip: str = "esp32s3", flash_offset: str = "0x0") -> List[str]:
    """Return the esptool arguments that write *firmware_path* to flash."""
    return [
        "--chip", chip,
        "--baud", str(baud_rate),
        "--before", "default_reset",
        "--after", "hard_reset",
        "--no-stub",
        "write_flash",
        "-z", flash_offset,
        str(firmware_path),
    ]


class FirmwareFlasher:
    """Invokes the flashing tool and reports its progress."""

    def __init__(self, tool_command: Optional[Sequence[str]] = None,
                 timeout: Optional[float] = None):
        self.tool_command = list(tool_command or DEFAULT_TOOL_COMMAND)
        self.timeout = timeout

    def flash(self, tool_arguments: Sequence[str],
              on_line: Optional[LineCallback] = None) -> FlashResult:
        """Run the tool with *tool_arguments*, forwarding each output line.

        Launch failures, nonzero exit codes and timeouts are returned as a
        :class:`FlashResult`; they never propagate as exceptions.
        """
        command = self.tool_command + [str(arg) for arg in tool_arguments]
        emit = self._safe_callback(on_line)
        emit(f"Executing: {shlex.join(command)}")
        logger.info(f"Running flashing tool: {shlex.join(command)}")

        try:
            process = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except (OSError, ValueError, subprocess.SubprocessError) as e:
            logger.error(f"Failed to launch flashing tool: {e}")
            return FlashResult.error(f"{e} (Make sure 'esptool' is installed)")

        timed_out = threading.Event()
        watchdog = None
        if self.timeout:
            watchdog = threading.Timer(self.timeout, self._kill, args=(process, timed_out))
            watchdog.daemon = True
            watchdog.start()

        try:
            with process.stdout:
                for line in process.stdout:
                    emit(line.rstrip("\r\n"))
            exit_code = process.wait()
        finally:
            if watchdog:
                watchdog.cancel()

        if timed_out.is_set():
            logger.error(f"Flashing tool timed out after {self.timeout}s")
            return FlashResult.timed_out(self.timeout)
        if exit_code == 0:
            logger.info("Flashing tool finished successfully")
            return FlashResult.succeeded()

        logger.error(f"Flashing tool exited with code {exit_code}")
        return FlashResult.failed(exit_code)

    @staticmethod
    def _kill(process: subprocess.Popen, timed_out: threading.Event) -> None:
        if process.poll() is None:
            timed_out.set()
            process.kill()

    @staticmethod
    def _safe_callback(on_line: Optional[LineCallback]) -> LineCallback:
        def emit(line: str) -> None:
            if on_line is None:
                return
            try:
                on_line(line)
            except Exception:
                logger.warning("Flash output callback failed", exc_info=True)
        return emit


__all__ = [
    "FirmwareFlasher",
    "FlashJob",
    "FlashOutcome",
    "FlashResult",
    "build_tool_arguments",
    "DEFAULT_TOOL_COMMAND",
]
