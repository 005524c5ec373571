"""
Firmware Provisioner
====================

Downloads the firmware binary for a device id, saves it to a scratch file
and hands it to the :class:`~esp32_flasher.core.flasher.FirmwareFlasher`.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Callable, Optional

import requests

from .config_manager import FlasherConfig
from .flasher import FirmwareFlasher, FlashJob, FlashResult, LineCallback, build_tool_arguments

logger = logging.getLogger(__name__)

Downloader = Callable[[str], bytes]

SCRATCH_PREFIX = "bruce_firmware_"


def save_firmware(content: bytes, scratch_dir: Optional[Path] = None) -> Path:
    """Write *content* to a new scratch file and return its path."""
    if scratch_dir:
        Path(scratch_dir).mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(prefix=SCRATCH_PREFIX, suffix=".bin",
                                dir=str(scratch_dir) if scratch_dir else None)
    with os.fdopen(fd, "wb") as f:
        f.write(content)
    return Path(name)


class FirmwareProvisioner:
    """Fetch, save and flash firmware for a device."""

    def __init__(
        self,
        config: FlasherConfig,
        downloader: Downloader,
        flasher: Optional[FirmwareFlasher] = None,
        saver: Callable[[bytes, Optional[Path]], Path] = save_firmware,
    ):
        self.config = config
        self.downloader = downloader
        self.flasher = flasher or FirmwareFlasher(config.tool_command, config.flash_timeout)
        self.saver = saver
        self.last_job: Optional[FlashJob] = None

    def firmware_url(self, device_id: str) -> str:
        return self.config.firmware_url(device_id)

    def flash(self, tool_arguments, on_line: Optional[LineCallback] = None) -> FlashResult:
        """Run the flashing tool with explicit arguments."""
        return self.flasher.flash(tool_arguments, on_line)

    def fetch_and_flash(self, device_id: str, baud_rate: int,
                        on_line: Optional[LineCallback] = None) -> FlashResult:
        """Download the firmware for *device_id* and flash it.

        Download and save failures are reported as a :class:`FlashResult`
        and the flashing tool is not started.  Unexpected errors from the
        collaborators propagate to the caller.
        """
        emit = on_line or (lambda line: None)

        if not device_id or not device_id.strip():
            return FlashResult.error("No device selected")
        device_id = device_id.strip()

        job = FlashJob(device_id=device_id, firmware_url=self.firmware_url(device_id))
        self.last_job = job

        emit(f"Downloading {job.firmware_url}...")
        try:
            content = self.downloader(job.firmware_url)
        except requests.RequestException as e:
            logger.error(f"Firmware download failed for {device_id}: {e}")
            job.exit_status = FlashResult.error(f"Download failed: {e}")
            return job.exit_status

        if not content:
            job.exit_status = FlashResult.error("Download failed: empty firmware image")
            return job.exit_status

        scratch_dir = Path(self.config.scratch_dir) if self.config.scratch_dir else None
        try:
            job.local_path = self.saver(content, scratch_dir)
        except OSError as e:
            logger.error(f"Failed to save firmware: {e}")
            job.exit_status = FlashResult.error(f"Save failed: {e}")
            return job.exit_status

        emit(f"Downloaded to {job.local_path}")
        logger.info(f"Saved {len(content)} bytes of firmware for {device_id} to {job.local_path}")

        job.tool_arguments = build_tool_arguments(
            job.local_path,
            baud_rate,
            chip=self.config.chip,
            flash_offset=self.config.flash_offset,
        )

        emit("Flashing...")
        try:
            job.exit_status = self.flasher.flash(job.tool_arguments, on_line)
        finally:
            if not self.config.keep_firmware:
                self._discard(job.local_path)

        return job.exit_status

    @staticmethod
    def _discard(path: Optional[Path]) -> None:
        if path is None:
            return
        try:
            Path(path).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove scratch firmware {path}: {e}")


__all__ = ["FirmwareProvisioner", "save_firmware", "Downloader"]
