import time
from functools import wraps
from typing import Callable, List, Optional

from rich import box
from rich.console import Console
from rich.prompt import Prompt, Confirm
from rich.table import Table

from esp32_flasher.core.config_manager import ConfigManager, FlasherConfig
from esp32_flasher.core.orchestrator import SessionOrchestrator
from esp32_flasher.utils.exceptions import FlasherError

# Seconds to keep listening for a reply after a one-shot send
REPLY_WINDOW = 1.0


def handle_errors(func: Callable[..., bool]) -> Callable[..., bool]:
    """
    Decorator to wrap CLI operations with consistent error handling.
    """
    @wraps(func)
    def wrapper(self, *args, **kwargs) -> bool:
        try:
            return func(self, *args, **kwargs)
        except (ValueError, FlasherError) as e:
            self._print(f"❌ {e}", "red")
        except OSError as e:
            self._print(f"❌ I/O error: {e}", "red")
        except Exception as e:
            self._print(f"❌ Unexpected error: {e}", "red")
        return False
    return wrapper


class ESP32CLI:
    def __init__(self, orchestrator: SessionOrchestrator,
                 config_manager: ConfigManager, config: FlasherConfig,
                 console: Optional[Console] = None):
        self.orchestrator = orchestrator
        self.config_manager = config_manager
        self.config = config
        self.console = console or Console()
        self.orchestrator.transcript.add_listener(self._echo_line)

    def _print(self, message: str, style: str = ""):
        self.console.print(message, style=style)

    def _echo_line(self, line: str):
        # Device output is printed verbatim, never as Rich markup
        self.console.print(line, markup=False, highlight=False)

    def _print_table(self, rows: List[List[str]], headers: List[str], title: str = ""):
        table = Table(title=title, box=box.ROUNDED)
        for header in headers:
            table.add_column(header)
        for row in rows:
            table.add_row(*row)
        self.console.print(table)

    @handle_errors
    def init_workspace(self) -> bool:
        base = self.config_manager.workspace_dir
        self._print(f"🚀 Initializing ESP32 Flasher workspace in: {base}", "bold blue")
        path = self.config_manager.save(self.config)
        self._print(f"  ✅ Configuration written: {path.name}", "green")
        self._print(f"  ✅ Command store: {self.config.command_store_path}", "green")
        self._print("✅ Workspace initialized!", "bold green")
        return True

    @handle_errors
    def list_devices(self, refresh: bool = False) -> bool:
        with self.console.status("Loading firmware manifest..."):
            devices = self.orchestrator.load_devices(force=refresh)
        if not devices:
            self._print("📂 No devices found.", "yellow")
            return False
        rows = [[d.id, d.display_name, d.category] for d in devices]
        self._print_table(rows, ["Id", "Name", "Category"], f"Devices ({len(devices)})")
        return True

    @handle_errors
    def list_ports(self) -> bool:
        ports = self.orchestrator.serial.list_ports()
        if not ports:
            self._print("🔌 No serial ports found.", "yellow")
            return True
        selector = self.orchestrator.serial.selector
        chosen = self.orchestrator.serial.preview_port()
        rows = [[p, "✅" if p == chosen else ""] for p in ports]
        self._print_table(rows, ["Port", "Selected"], f"Serial Ports ({selector.description})")
        return True

    @handle_errors
    def flash_device(self, device_id: str) -> bool:
        self._print(f"🔥 Installing firmware for '{device_id}'", "bold blue")
        result = self.orchestrator.install_firmware(device_id)
        if result.success:
            self._print("✅ Installation complete!", "bold green")
            return True
        self._print(f"❌ {result}", "red")
        return False

    @handle_errors
    def send_once(self, text: str) -> bool:
        self.orchestrator.attach_serial()
        if not self.orchestrator.serial.is_connected:
            return False
        try:
            sent = self.orchestrator.send_command(text)
            time.sleep(REPLY_WINDOW)
            return sent
        finally:
            self.orchestrator.disconnect()

    @handle_errors
    def list_commands(self) -> bool:
        commands = self.orchestrator.registry.list()
        if not commands:
            self._print("📂 No saved commands.", "yellow")
            return True
        rows = [[c.id, c.name, c.command] for c in commands]
        self._print_table(rows, ["Id", "Name", "Command"], "Custom Commands")
        return True

    @handle_errors
    def add_command(self, name: str, text: str) -> bool:
        record = self.orchestrator.add_custom_command(name, text)
        self._print(f"✅ Saved '{record.name}' with id {record.id}", "green")
        return True

    @handle_errors
    def delete_command(self, command_id: str) -> bool:
        if self.orchestrator.registry.get(command_id) is None:
            self._print(f"⚠️  No command with id {command_id}", "yellow")
            return True
        self.orchestrator.delete_custom_command(command_id)
        self._print(f"✅ Deleted command {command_id}", "green")
        return True

    @handle_errors
    def run_command(self, command_id: str) -> bool:
        record = self.orchestrator.registry.get(command_id)
        if record is None:
            raise ValueError(f"No command with id {command_id}")
        return self.send_once(record.command)

    @handle_errors
    def run_terminal(self) -> bool:
        """Interactive serial terminal; lines starting with '/' are local commands."""
        self.orchestrator.attach_serial()
        self._print("💡 Type text to send it. /help for local commands, /quit to exit.", "dim")
        try:
            while True:
                try:
                    line = Prompt.ask("", console=self.console)
                except EOFError:
                    break
                if line.startswith("/"):
                    if not self._terminal_command(line[1:].split()):
                        break
                elif line:
                    self.orchestrator.send_command(line)
        except KeyboardInterrupt:
            self._print("\n⏹️ Terminal closed", "yellow")
        finally:
            self.orchestrator.disconnect()
        return True

    def _terminal_command(self, parts: List[str]) -> bool:
        """Handle a '/command'.  Return False to leave the terminal."""
        if not parts:
            return True
        cmd, args = parts[0].lower(), parts[1:]
        if cmd in ('quit', 'exit', 'q'):
            return False
        elif cmd == 'baud' and args:
            self.orchestrator.set_baud_rate(_parse_int(args[0]))
        elif cmd == 'connect':
            self.orchestrator.connect()
        elif cmd == 'disconnect':
            self.orchestrator.disconnect()
        elif cmd == 'reset':
            self.orchestrator.reset_device()
        elif cmd == 'commands':
            self.list_commands()
        elif cmd == 'run' and args:
            self.orchestrator.run_custom_command(args[0])
        else:
            self._print("Local commands: /baud <rate>, /connect, /disconnect, /reset, "
                        "/commands, /run <id>, /quit", "cyan")
        return True


def _parse_int(value: str):
    try:
        return int(value)
    except ValueError:
        return value


class InteractiveCLI:
    """Rich-based interactive shell over the whole workflow."""

    def __init__(self, cli: ESP32CLI):
        self.cli = cli
        self.orchestrator = cli.orchestrator
        self.console = cli.console
        self.running = True

    def run(self):
        """Run the interactive CLI."""
        self.console.print("[bold blue]ESP32 Flasher[/bold blue] - type 'help' for commands")
        self.orchestrator.attach_serial()

        while self.running:
            try:
                selected = self.orchestrator.selected_device or "none"
                command = Prompt.ask(
                    f"\n[bold blue][{selected}][/bold blue]",
                    console=self.console
                ).strip()
                self.handle_command(command)

            except KeyboardInterrupt:
                if Confirm.ask("\nDo you want to quit?", console=self.console):
                    break
            except EOFError:
                break

        self.orchestrator.close()

    def handle_command(self, command: str):
        """Handle one shell command."""
        parts = command.split()
        if not parts:
            return

        cmd = parts[0].lower()
        args = parts[1:]

        try:
            if cmd in ['quit', 'exit', 'q']:
                self.running = False

            elif cmd == 'help':
                self.show_help()

            elif cmd == 'devices':
                self.cli.list_devices(refresh=bool(args and args[0] == 'refresh'))

            elif cmd == 'select':
                if not args:
                    self.console.print("[red]Usage: select <device-id>[/red]")
                    return
                self.orchestrator.select_device(args[0])

            elif cmd == 'install':
                device = args[0] if args else None
                if device is None and not self.orchestrator.selected_device:
                    device = Prompt.ask("Device id", console=self.console)
                with self.console.status("Installing firmware..."):
                    result = self.orchestrator.install_firmware(device)
                if result.success:
                    self.console.print("[bold green]✅ Installation complete![/bold green]")

            elif cmd == 'connect':
                self.orchestrator.connect()

            elif cmd == 'disconnect':
                self.orchestrator.disconnect()

            elif cmd == 'send':
                if not args:
                    self.console.print("[red]Usage: send <text>[/red]")
                    return
                self.orchestrator.send_command(command.split(None, 1)[1])

            elif cmd == 'baud':
                if not args:
                    self.console.print(f"Baud rate: {self.orchestrator.baud_rate}")
                    return
                self.orchestrator.set_baud_rate(_parse_int(args[0]))

            elif cmd == 'reset':
                self.orchestrator.reset_device()

            elif cmd == 'ports':
                self.cli.list_ports()

            elif cmd == 'commands':
                self.cli.list_commands()

            elif cmd == 'add':
                name = Prompt.ask("Command name", console=self.console)
                text = Prompt.ask("Command", console=self.console)
                self.cli.add_command(name, text)

            elif cmd == 'delete':
                if not args:
                    self.console.print("[red]Usage: delete <id>[/red]")
                    return
                if Confirm.ask(f"Delete command {args[0]}?", console=self.console):
                    self.cli.delete_command(args[0])

            elif cmd == 'run':
                if not args:
                    self.console.print("[red]Usage: run <id>[/red]")
                    return
                self.orchestrator.run_custom_command(args[0])

            elif cmd == 'tui':
                from esp32_flasher.interfaces.tui import launch_tui
                launch_tui(self.orchestrator)

            else:
                self.console.print(f"[red]Unknown command: {cmd}[/red]")
                self.console.print("Type 'help' for available commands")

        except Exception as e:
            self.console.print(f"[red]Error: {e}[/red]")

    def show_help(self):
        """Show help information."""
        help_table = Table(title="Available Commands", box=box.ROUNDED)
        help_table.add_column("Command", style="cyan", no_wrap=True)
        help_table.add_column("Description", style="white")
        help_table.add_column("Example", style="dim white")

        commands = [
            ("devices [refresh]", "List devices from the manifest", "devices"),
            ("select <id>", "Choose the device to install", "select m5stack-cardputer"),
            ("install [id]", "Download and flash firmware", "install"),
            ("connect / disconnect", "Open or close the serial port", "connect"),
            ("send <text>", "Send a line to the device", "send help"),
            ("baud [rate]", "Show or change the baud rate", "baud 115200"),
            ("reset", "Reset the device", "reset"),
            ("ports", "List serial ports", "ports"),
            ("commands", "List saved commands", "commands"),
            ("add", "Save a new command", "add"),
            ("delete <id>", "Delete a saved command", "delete 1700000000000"),
            ("run <id>", "Send a saved command", "run 1700000000000"),
            ("tui", "Launch full TUI interface", "tui"),
            ("help", "Show this help", "help"),
            ("quit, exit, q", "Exit application", "quit"),
        ]

        for cmd, desc, example in commands:
            help_table.add_row(cmd, desc, example)

        self.console.print(help_table)


def launch_cli(orchestrator: SessionOrchestrator, config_manager: ConfigManager,
               config: FlasherConfig) -> bool:
    """Launch the interactive CLI."""
    cli = ESP32CLI(orchestrator, config_manager, config)
    InteractiveCLI(cli).run()
    return True
