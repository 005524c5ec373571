from pathlib import Path

import pytest
import requests

from esp32_flasher.core.config_manager import FlasherConfig
from esp32_flasher.core.flasher import FlashOutcome, FlashResult
from esp32_flasher.core.provisioner import FirmwareProvisioner, save_firmware


class RecordingFlasher:
    """Flasher double that records its calls and returns a fixed result."""

    def __init__(self, result=None, error=None):
        self.result = result or FlashResult.succeeded()
        self.error = error
        self.calls = []

    def flash(self, tool_arguments, on_line=None):
        path = Path(tool_arguments[-1])
        self.calls.append((list(tool_arguments), path.exists(), path.read_bytes()))
        if on_line:
            on_line("Writing at 0x00000000... (100 %)")
        if self.error:
            raise self.error
        return self.result


@pytest.fixture
def config(tmp_path):
    return FlasherConfig(scratch_dir=str(tmp_path / "scratch"))


def downloader_returning(content, calls=None):
    def download(url):
        if calls is not None:
            calls.append(url)
        return content
    return download


def test_fetch_and_flash_success(config):
    urls, lines = [], []
    flasher = RecordingFlasher()
    provisioner = FirmwareProvisioner(config, downloader_returning(b"\xe9firmware", urls), flasher)

    result = provisioner.fetch_and_flash("m5stack-cardputer", 921600, lines.append)

    assert result.success
    assert urls == ["https://github.com/pr3y/Bruce/releases/download/1.11/"
                    "Bruce-m5stack-cardputer.bin"]
    args, existed, content = flasher.calls[0]
    assert existed and content == b"\xe9firmware"
    assert args[:4] == ["--chip", "esp32s3", "--baud", "921600"]
    assert lines[0].startswith("Downloading https://github.com/")
    assert any(line.startswith("Downloaded to ") for line in lines)
    assert "Flashing..." in lines
    assert provisioner.last_job.exit_status is result


def test_scratch_file_is_removed_after_flash(config):
    provisioner = FirmwareProvisioner(config, downloader_returning(b"data"), RecordingFlasher())

    provisioner.fetch_and_flash("dev", 115200)

    assert not provisioner.last_job.local_path.exists()


def test_keep_firmware_leaves_scratch_file(tmp_path):
    config = FlasherConfig(scratch_dir=str(tmp_path), keep_firmware=True)
    provisioner = FirmwareProvisioner(config, downloader_returning(b"data"), RecordingFlasher())

    provisioner.fetch_and_flash("dev", 115200)

    assert provisioner.last_job.local_path.read_bytes() == b"data"


def test_download_failure_skips_flashing(config):
    def failing(url):
        raise requests.HTTPError("404 Client Error: Not Found")

    flasher = RecordingFlasher()
    provisioner = FirmwareProvisioner(config, failing, flasher)

    result = provisioner.fetch_and_flash("unknown-board", 115200)

    assert result.outcome == FlashOutcome.ERROR
    assert str(result) == "Error: Download failed: 404 Client Error: Not Found"
    assert flasher.calls == []


def test_empty_download_skips_flashing(config):
    flasher = RecordingFlasher()
    provisioner = FirmwareProvisioner(config, downloader_returning(b""), flasher)

    result = provisioner.fetch_and_flash("dev", 115200)

    assert not result.success
    assert flasher.calls == []


def test_save_failure_skips_flashing(config):
    def saver(content, scratch_dir):
        raise OSError("disk full")

    flasher = RecordingFlasher()
    provisioner = FirmwareProvisioner(config, downloader_returning(b"data"), flasher, saver=saver)

    result = provisioner.fetch_and_flash("dev", 115200)

    assert str(result) == "Error: Save failed: disk full"
    assert flasher.calls == []


@pytest.mark.parametrize("device_id", ["", "   "])
def test_missing_device_id(config, device_id):
    calls = []
    provisioner = FirmwareProvisioner(config, downloader_returning(b"x", calls), RecordingFlasher())

    result = provisioner.fetch_and_flash(device_id, 115200)

    assert str(result) == "Error: No device selected"
    assert calls == []


def test_flash_failure_result_is_returned(config):
    flasher = RecordingFlasher(result=FlashResult.failed(2))
    provisioner = FirmwareProvisioner(config, downloader_returning(b"data"), flasher)

    assert str(provisioner.fetch_and_flash("dev", 115200)) == "Failed with exit code 2"


def test_unexpected_flasher_error_propagates_and_cleans_up(config):
    flasher = RecordingFlasher(error=RuntimeError("boom"))
    provisioner = FirmwareProvisioner(config, downloader_returning(b"data"), flasher)

    with pytest.raises(RuntimeError):
        provisioner.fetch_and_flash("dev", 115200)

    assert not provisioner.last_job.local_path.exists()


def test_save_firmware_creates_unique_files(tmp_path):
    first = save_firmware(b"a", tmp_path)
    second = save_firmware(b"b", tmp_path)

    assert first != second
    assert first.name.startswith("bruce_firmware_") and first.suffix == ".bin"
    assert first.read_bytes() == b"a"
