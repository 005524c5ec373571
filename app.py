import argparse
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from esp32_flasher.core.command_registry import CommandRegistry, create_store
from esp32_flasher.core.config_manager import ConfigManager, FlasherConfig
from esp32_flasher.core.flasher import FirmwareFlasher
from esp32_flasher.core.orchestrator import SessionOrchestrator
from esp32_flasher.core.port_selection import create_selector
from esp32_flasher.core.provisioner import FirmwareProvisioner
from esp32_flasher.core.serial_session import SerialSession
from esp32_flasher.utils.downloader import HttpDownloader
from esp32_flasher.utils.exceptions import ConfigError


class ESP32FlasherApp:
    """Main application controller wiring the session core together."""

    def __init__(self, workspace_dir: Optional[Path] = None,
                 overrides: Optional[Dict[str, Any]] = None,
                 config: Optional[FlasherConfig] = None):
        self.workspace_dir = Path(workspace_dir or Path.cwd())
        self.config_manager = ConfigManager(self.workspace_dir)
        self.config = config or self.config_manager.load(overrides)
        self.logger = logging.getLogger(__name__)

        try:
            selector = create_selector(self.config.port_selection)
        except ValueError as e:
            raise ConfigError(str(e)) from e

        serial_log = (self.config_manager.resolve(self.config.serial_log_file)
                      if self.config.serial_log_file else None)
        self.serial_session = SerialSession(
            baud_rate=self.config.baud_rate,
            selector=selector,
            log_file=serial_log,
        )
        self.downloader = HttpDownloader(timeout=self.config.download_timeout)
        self.provisioner = FirmwareProvisioner(
            self.config,
            self.downloader,
            FirmwareFlasher(self.config.tool_command, self.config.flash_timeout),
        )
        store_path = self.config_manager.resolve(self.config.command_store_path)
        self.registry = CommandRegistry(create_store(self.config.command_store, store_path))
        self.orchestrator = SessionOrchestrator(
            self.serial_session,
            self.provisioner,
            self.registry,
            manifest_url=self.config.manifest_url,
        )

        self.logger.info(f"ESP32 Flasher initialized in workspace: {self.workspace_dir}")

    def run_cli(self, args: argparse.Namespace) -> bool:
        """Handle one-shot CLI commands."""
        from esp32_flasher.interfaces.cli import ESP32CLI

        cli = ESP32CLI(self.orchestrator, self.config_manager, self.config)
        try:
            if args.command == 'init':
                return cli.init_workspace()

            elif args.command == 'devices':
                return cli.list_devices(refresh=getattr(args, 'refresh', False))

            elif args.command == 'ports':
                return cli.list_ports()

            elif args.command == 'flash':
                return cli.flash_device(args.device)

            elif args.command == 'send':
                return cli.send_once(args.text)

            elif args.command == 'terminal':
                return cli.run_terminal()

            elif args.command == 'commands':
                return self._manage_commands(cli, args)

            else:
                self.logger.error(f"Unknown command: {args.command}")
                return False

        except Exception as e:
            self.logger.error(f"Command failed: {e}")
            return False

    @staticmethod
    def _manage_commands(cli, args: argparse.Namespace) -> bool:
        action = getattr(args, 'action', None) or 'list'
        if action == 'list':
            return cli.list_commands()
        elif action == 'add':
            return cli.add_command(args.name, args.text)
        elif action == 'delete':
            return cli.delete_command(args.id)
        elif action == 'run':
            return cli.run_command(args.id)
        cli._print(f"❌ Unknown commands action: {action}", "red")
        return False

    def run_interactive(self, interface: str = "cli") -> bool:
        """Run interactive interface."""
        try:
            if interface == "cli":
                from esp32_flasher.interfaces.cli import launch_cli
                return launch_cli(self.orchestrator, self.config_manager, self.config)
            elif interface == "tui":
                from esp32_flasher.interfaces.tui import launch_tui
                return launch_tui(self.orchestrator)
            else:
                print(f"❌ Unknown interface: {interface}")
                return False
        except Exception as e:
            self.logger.error(f"Interactive mode failed: {e}")
            return False

    def run_web(self, host: str = "127.0.0.1", port: int = 8000) -> bool:
        """Run web interface."""
        try:
            from esp32_flasher.interfaces.web_app import create_app
            import uvicorn

            fastapi_app = create_app(self.orchestrator)
            uvicorn.run(fastapi_app, host=host, port=port)
            return True
        except Exception as e:
            self.logger.error(f"Web interface failed: {e}")
            return False

    def cleanup(self):
        """Clean up resources."""
        try:
            self.orchestrator.close()
            self.registry.close()
            self.downloader.close()
            self.logger.info("Application cleanup completed")
        except Exception as e:
            self.logger.error(f"Cleanup failed: {e}")

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.cleanup()
