import logging
import sys

import pytest
from rich.logging import RichHandler

from esp32_flasher.utils.logger import setup_logging


@pytest.fixture
def clean_root():
    root = logging.getLogger()
    saved = (list(root.handlers), root.level, sys.excepthook)
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    handlers, level, hook = saved
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)
    sys.excepthook = hook


def test_console_and_file_levels_are_independent(clean_root, tmp_path):
    log_file = tmp_path / "flasher.log"

    setup_logging("debug", str(log_file), console_level="warning", force=True)
    logging.getLogger("esp32_flasher.test").debug("flash started on /dev/ttyUSB0")
    for handler in clean_root.handlers:
        handler.flush()

    console = [h for h in clean_root.handlers if isinstance(h, RichHandler)]
    assert len(console) == 1
    assert console[0].level == logging.WARNING
    assert clean_root.level == logging.DEBUG
    assert "flash started on /dev/ttyUSB0" in log_file.read_text(encoding="utf-8")


def test_second_call_keeps_existing_handlers(clean_root, tmp_path):
    setup_logging("info", force=True)
    handlers = list(clean_root.handlers)

    setup_logging("debug", str(tmp_path / "ignored.log"))

    assert clean_root.handlers == handlers
    assert not (tmp_path / "ignored.log").exists()


def test_chatty_libraries_are_quieted(clean_root):
    setup_logging("info", force=True)

    assert logging.getLogger("urllib3").level == logging.WARNING


def test_invalid_level_is_rejected(clean_root):
    with pytest.raises(ValueError):
        setup_logging("loud", force=True)
