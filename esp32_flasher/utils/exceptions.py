"""Exception types shared across esp32_flasher."""


class FlasherError(Exception):
    """Base class for errors raised by esp32_flasher."""


class ConfigError(FlasherError):
    """Raised when the configuration file or a config value is invalid."""


class CommandValidationError(FlasherError):
    """Raised when a custom serial command is missing its name or text."""


__all__ = [
    "FlasherError",
    "ConfigError",
    "CommandValidationError",
]
