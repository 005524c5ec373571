import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from app import ESP32FlasherApp
from esp32_flasher.utils.exceptions import ConfigError
from esp32_flasher.utils.logger import setup_logging

# Commands that draw to the terminal themselves
QUIET_COMMANDS = {"terminal", "interactive", "send"}


def create_parser() -> argparse.ArgumentParser:
    """Create command-line argument parser."""
    parser = argparse.ArgumentParser(
        description="ESP32 Flasher - firmware installer and serial terminal",
        epilog="""
Examples:
    %(prog)s init                           # Write default configuration
    %(prog)s devices                        # List devices from the firmware manifest
    %(prog)s flash m5stack-cardputer        # Download and flash firmware
    %(prog)s terminal                       # Open the serial terminal
    %(prog)s commands add Reset AT+RST      # Save a custom command
    %(prog)s interactive --interface tui    # Terminal UI mode
    %(prog)s web                            # Web interface
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    # Global options
    parser.add_argument('--workspace', '-w', type=Path,
                        help='Workspace directory (default: current directory)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')
    parser.add_argument('--log-file', help='Log file path')
    parser.add_argument('--baud', '-b', type=int, help='Serial baud rate')
    parser.add_argument('--port', '-p', dest='serial_port',
                        help='Serial port to open (default: last enumerated port)')
    parser.add_argument('--chip', help='Chip family passed to esptool')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    subparsers.add_parser('init', help='Write default configuration in the workspace')

    devices_parser = subparsers.add_parser('devices', help='List devices in the firmware manifest')
    devices_parser.add_argument('--refresh', action='store_true', help='Fetch the manifest again')

    subparsers.add_parser('ports', help='List serial ports')

    flash_parser = subparsers.add_parser('flash', help='Download and flash firmware for a device')
    flash_parser.add_argument('device', help='Device id from the manifest')

    send_parser = subparsers.add_parser('send', help='Send one command over serial')
    send_parser.add_argument('text', help='Command text')

    subparsers.add_parser('terminal', help='Open the interactive serial terminal')

    commands_parser = subparsers.add_parser('commands', help='Manage saved custom commands')
    commands_sub = commands_parser.add_subparsers(dest='action')
    commands_sub.add_parser('list', help='List saved commands')
    add_parser = commands_sub.add_parser('add', help='Save a command')
    add_parser.add_argument('name', help='Display name')
    add_parser.add_argument('text', help='Command text sent to the device')
    delete_parser = commands_sub.add_parser('delete', help='Delete a saved command')
    delete_parser.add_argument('id', help='Command id')
    run_parser = commands_sub.add_parser('run', help='Send a saved command')
    run_parser.add_argument('id', help='Command id')

    interactive_parser = subparsers.add_parser('interactive', help='Start interactive mode')
    interactive_parser.add_argument('--interface', '-i', choices=['cli', 'tui'],
                                    default='cli', help='Interface type')

    # Web interface
    web_parser = subparsers.add_parser('web', help='Start web interface')
    web_parser.add_argument('--host', default='127.0.0.1', help='Host address')
    web_parser.add_argument('--http-port', type=int, default=8000, help='Port number')

    return parser


def config_overrides(args: argparse.Namespace) -> dict:
    """Map global CLI flags onto configuration keys."""
    return {
        'baud_rate': args.baud,
        'port_selection': f"name:{args.serial_port}" if args.serial_port else None,
        'chip': args.chip,
    }


def main():
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    # Set up logging; screen-owning commands only show warnings on stderr
    log_level = "DEBUG" if args.verbose else "INFO"
    quiet = args.command in QUIET_COMMANDS or args.command is None
    console_level = "WARNING" if quiet and not args.verbose else log_level
    setup_logging(log_level, args.log_file, console_level=console_level)

    logger = logging.getLogger(__name__)
    logger.info("ESP32 Flasher starting...")

    try:
        with ESP32FlasherApp(args.workspace, overrides=config_overrides(args)) as app:
            if args.command == 'interactive':
                success = app.run_interactive(args.interface)
            elif args.command == 'web':
                success = app.run_web(args.host, args.http_port)
            elif args.command:
                success = app.run_cli(args)
            else:
                parser.print_help()
                print("\n" + "=" * 60)
                print("No command specified. Starting interactive mode.")
                print("=" * 60)
                success = app.run_interactive('cli')

        sys.exit(0 if success else 1)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(2)
    except KeyboardInterrupt:
        print("\n👋 Goodbye!")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Application failed: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
