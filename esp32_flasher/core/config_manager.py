from __future__ import annotations
from dataclasses import dataclass, asdict, fields
import json
import logging
import shutil
import sys
from pathlib import Path
from typing import List, Any, Dict, Optional

from esp32_flasher.utils.exceptions import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "esp32_flasher.json"

DEFAULT_MANIFEST_URL = (
    "https://raw.githubusercontent.com/pr3y/Bruce/refs/heads/WebPage/src/lib/data/manifests.json"
)
DEFAULT_FIRMWARE_BASE_URL = "https://github.com/pr3y/Bruce/releases/download/1.11/"
DEFAULT_FIRMWARE_NAME = "Bruce-{device_id}.bin"

COMMAND_STORE_BACKENDS = ("json", "sqlite")


@dataclass
class FlasherConfig:
    """Flasher configuration."""
    manifest_url: str = DEFAULT_MANIFEST_URL
    firmware_base_url: str = DEFAULT_FIRMWARE_BASE_URL
    firmware_name_template: str = DEFAULT_FIRMWARE_NAME
    chip: str = "esp32s3"
    flash_offset: str = "0x0"
    baud_rate: int = 115200
    tool_command: List[str] = None
    port_selection: str = "last"
    download_timeout: Optional[float] = 60.0
    flash_timeout: Optional[float] = None
    command_store: str = "json"
    command_store_path: str = ""
    scratch_dir: str = ""
    keep_firmware: bool = False
    serial_log_file: str = ""

    def __post_init__(self):
        if self.tool_command is None:
            self.tool_command = [sys.executable, "-m", "esptool"]
        if not self.command_store_path:
            suffix = "db" if self.command_store == "sqlite" else "json"
            self.command_store_path = f"custom_commands.{suffix}"
        self.validate()

    def validate(self):
        """Raise :class:`ConfigError` if a value is unusable."""
        if not isinstance(self.baud_rate, int) or self.baud_rate <= 0:
            raise ConfigError(f"Invalid baud rate: {self.baud_rate!r}")
        if self.command_store not in COMMAND_STORE_BACKENDS:
            raise ConfigError(
                f"Unknown command store {self.command_store!r}, "
                f"expected one of {', '.join(COMMAND_STORE_BACKENDS)}"
            )
        if not self.tool_command or not all(isinstance(part, str) for part in self.tool_command):
            raise ConfigError("tool_command must be a non-empty list of strings")
        if "{device_id}" not in self.firmware_name_template:
            raise ConfigError("firmware_name_template must contain '{device_id}'")
        for name in ("download_timeout", "flash_timeout"):
            value = getattr(self, name)
            if value is not None and value <= 0:
                raise ConfigError(f"{name} must be positive or null")

    def firmware_url(self, device_id: str) -> str:
        """Return the download URL for *device_id*."""
        return self.firmware_base_url + self.firmware_name_template.format(device_id=device_id)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serialisable dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> FlasherConfig:
        """Create from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})


class ConfigManager:
    """Loads and saves :class:`FlasherConfig` inside a workspace directory."""

    def __init__(self, workspace_dir: Optional[Path] = None):
        self.workspace_dir = Path(workspace_dir or Path.cwd())
        self.config_file = self.workspace_dir / CONFIG_FILE_NAME

    def resolve(self, path: str) -> Path:
        """Resolve *path* relative to the workspace."""
        candidate = Path(path)
        return candidate if candidate.is_absolute() else self.workspace_dir / candidate

    def load(self, overrides: Optional[Dict[str, Any]] = None) -> FlasherConfig:
        """Load the configuration file, applying *overrides* on top."""
        data: Dict[str, Any] = {}
        if self.config_file.exists():
            try:
                with open(self.config_file, 'r', encoding='utf-8') as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                raise ConfigError(f"Failed to read {self.config_file}: {e}") from e
            if not isinstance(data, dict):
                raise ConfigError(f"{self.config_file} must contain a JSON object")
            logger.debug(f"Loaded configuration from {self.config_file}")

        if overrides:
            data.update({k: v for k, v in overrides.items() if v is not None})

        try:
            return FlasherConfig.from_dict(data)
        except TypeError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e

    def save(self, config: FlasherConfig) -> Path:
        """Write *config* to the workspace, keeping a backup of the old file."""
        self.workspace_dir.mkdir(parents=True, exist_ok=True)
        if self.config_file.exists():
            backup_file = self.config_file.with_suffix('.json.bak')
            shutil.copy2(self.config_file, backup_file)

        with open(self.config_file, 'w', encoding='utf-8') as f:
            json.dump(config.to_dict(), f, indent=2)

        logger.info(f"Configuration saved to {self.config_file}")
        return self.config_file
