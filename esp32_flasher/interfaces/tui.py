"""
ESP32 Flasher - Terminal UI
===========================

Textual front-end over :class:`SessionOrchestrator`: device picker,
firmware install, serial terminal and saved custom commands.
"""

from __future__ import annotations

import threading
from typing import Any, Optional

from rich.console import Console
from textual import work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.widgets import Button, DataTable, Footer, Header, Input, Label, RichLog, Static

from esp32_flasher.core.orchestrator import SessionOrchestrator
from esp32_flasher.utils.exceptions import CommandValidationError


class FlasherTUIApp(App):
    """Textual TUI application."""

    TITLE = "ESP32 Flasher"

    CSS = """
    .sidebar {
        dock: left;
        width: 42;
        background: $surface;
    }

    #devices-table {
        height: 1fr;
    }

    #commands-table {
        height: 12;
    }

    #status {
        height: 1;
        background: $primary;
    }

    #terminal {
        height: 1fr;
    }
    """

    BINDINGS = [
        Binding("ctrl+q", "quit", "Quit"),
        Binding("f2", "load_devices", "Devices"),
        Binding("f5", "install", "Install"),
        Binding("f6", "connect", "Connect"),
        Binding("f7", "disconnect", "Disconnect"),
        Binding("f8", "delete_command", "Delete Cmd"),
        Binding("f9", "focus_baud", "Baud"),
    ]

    def __init__(self, orchestrator: SessionOrchestrator):
        super().__init__()
        self.orchestrator = orchestrator
        self._ui_thread: Optional[int] = None

    def compose(self) -> ComposeResult:
        """Create the UI layout."""
        yield Header()

        with Horizontal():
            with Vertical(classes="sidebar"):
                yield Label("Devices")
                yield DataTable(id="devices-table", cursor_type="row")
                yield Button("Install Firmware", id="install-btn", variant="success")
                yield Label("Custom Commands")
                yield DataTable(id="commands-table", cursor_type="row")
                yield Input(placeholder="Command name", id="cmd-name")
                yield Input(placeholder="Command text", id="cmd-text")
                yield Button("Save Command", id="save-cmd-btn", variant="primary")

            with Vertical():
                yield Static(id="status")
                yield Input(placeholder="Baud rate (Enter to apply)", id="baud-input", restrict=r"[0-9]*")
                yield RichLog(id="terminal", markup=False, highlight=False, wrap=True)
                yield Input(placeholder="Send command to device...", id="serial-input")

        yield Footer()

    def on_mount(self) -> None:
        """Initialize the application."""
        self._ui_thread = threading.get_ident()

        devices = self.query_one("#devices-table", DataTable)
        devices.add_columns("Id", "Name", "Category")
        commands = self.query_one("#commands-table", DataTable)
        commands.add_columns("Name", "Command")

        terminal = self.query_one("#terminal", RichLog)
        for line in self.orchestrator.transcript.attach(self._on_transcript_line):
            terminal.write(line)

        self.orchestrator.add_observer(self._on_event)
        self.orchestrator.attach_serial(auto_connect=False)
        self.refresh_commands_table()
        self.update_status()
        self.action_load_devices()
        self.action_connect()

    def on_unmount(self) -> None:
        self.orchestrator.transcript.remove_listener(self._on_transcript_line)

    # Thread hand-off -----------------------------------------------------
    def _on_ui_thread(self, callback, *args: Any) -> None:
        if threading.get_ident() == self._ui_thread:
            callback(*args)
        else:
            self.call_from_thread(callback, *args)

    def _on_transcript_line(self, line: str) -> None:
        self._on_ui_thread(self._write_line, line)

    def _write_line(self, line: str) -> None:
        self.query_one("#terminal", RichLog).write(line)

    def _on_event(self, event: str, payload: Any) -> None:
        if event == 'busy_changed':
            self._on_ui_thread(self.update_status)
        elif event == 'install_complete':
            self._on_ui_thread(self.notify, f"Firmware installed on {payload}", title="Done")
        elif event == 'devices_loaded':
            self._on_ui_thread(self.refresh_devices_table)

    # View updates --------------------------------------------------------
    def update_status(self) -> None:
        state = self.orchestrator.serial.state
        parts = [
            f"Port: {state.active_port or 'none'}",
            f"Baud: {state.baud_rate}",
            f"Device: {self.orchestrator.selected_device or 'none'}",
        ]
        if self.orchestrator.is_busy:
            parts.append("Installing...")
        self.query_one("#status", Static).update("  |  ".join(parts))

    def refresh_devices_table(self) -> None:
        table = self.query_one("#devices-table", DataTable)
        table.clear()
        seen = set()
        for device in self.orchestrator.devices:
            # Duplicate ids are kept by the parser; show each id once
            if device.id in seen:
                continue
            seen.add(device.id)
            table.add_row(device.id, device.display_name, device.category, key=device.id)

    def refresh_commands_table(self) -> None:
        table = self.query_one("#commands-table", DataTable)
        table.clear()
        for command in self.orchestrator.custom_commands():
            table.add_row(command.name, command.command, key=command.id)

    # Actions -------------------------------------------------------------
    @work(thread=True, exclusive=True, group="manifest")
    def action_load_devices(self) -> None:
        """Fetch the manifest without blocking the UI."""
        self.orchestrator.load_devices(force=True)

    def action_install(self) -> None:
        if self.orchestrator.is_busy:
            self.notify("Installation already in progress", severity="warning")
            return
        if not self.orchestrator.selected_device:
            self.notify("Select a device first", severity="warning")
            return
        self.orchestrator.install_firmware_async()

    @work(thread=True, exclusive=True, group="serial")
    def action_connect(self) -> None:
        self.orchestrator.connect()
        self._on_ui_thread(self.update_status)

    def action_disconnect(self) -> None:
        self.orchestrator.disconnect()
        self.update_status()

    def action_focus_baud(self) -> None:
        self.query_one("#baud-input", Input).focus()

    def submit_baud(self, text: str) -> bool:
        """Apply a baud rate typed by the user."""
        try:
            baud_rate = int(text.strip())
        except ValueError:
            self.notify(f"Invalid baud rate: {text!r}", severity="error")
            return False
        if baud_rate <= 0:
            self.notify(f"Invalid baud rate: {baud_rate}", severity="error")
            return False
        applied = self.orchestrator.set_baud_rate(baud_rate)
        self.update_status()
        return applied

    def action_delete_command(self) -> None:
        table = self.query_one("#commands-table", DataTable)
        if table.row_count == 0:
            return
        row_key = table.coordinate_to_cell_key(table.cursor_coordinate).row_key
        self.orchestrator.delete_custom_command(str(row_key.value))
        self.refresh_commands_table()

    # Events --------------------------------------------------------------
    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        """Select a device, or send a saved command."""
        if not event.row_key:
            return
        key = str(event.row_key.value)
        if event.data_table.id == "devices-table":
            self.orchestrator.select_device(key)
            self.update_status()
        elif event.data_table.id == "commands-table":
            self.orchestrator.run_custom_command(key)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        """Handle button presses."""
        if event.button.id == "install-btn":
            self.action_install()
        elif event.button.id == "save-cmd-btn":
            name_input = self.query_one("#cmd-name", Input)
            text_input = self.query_one("#cmd-text", Input)
            try:
                self.orchestrator.add_custom_command(name_input.value, text_input.value)
            except CommandValidationError as e:
                self.notify(str(e), severity="error")
                return
            except Exception as e:
                self.notify(f"Failed to save command: {e}", severity="error")
                return
            name_input.value = ""
            text_input.value = ""
            self.refresh_commands_table()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        """Send terminal input to the device, or apply a typed baud rate."""
        if event.input.id == "serial-input":
            command = event.value.strip()
            if command:
                self.orchestrator.send_command(command)
            event.input.value = ""
        elif event.input.id == "baud-input":
            if self.submit_baud(event.value):
                event.input.value = ""


def launch_tui(orchestrator: SessionOrchestrator) -> bool:
    """Launch the TUI application."""
    try:
        FlasherTUIApp(orchestrator).run()
    except Exception as e:
        Console(stderr=True).print(f"[red]TUI failed: {e}[/red]")
        return False
    return True
