import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import pingguard.settings as default_settings

log = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when the supervisor configuration is rejected before startup."""


def parse_listen_addr(addr: str) -> Tuple[str, int]:
    """
    Splits a listen address of the form 'host:port' (or '[v6-host]:port').

    :param addr: The address string from the command line or environment.
    :return tuple: A tuple containing (host, port).
    :raises ConfigError: If the address is malformed or the port is out of range.
    """
    host, sep, port_str = addr.strip().rpartition(":")
    if not sep or not host:
        raise ConfigError(f"Invalid listen address '{addr}'. Expected IP:PORT.")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        port = int(port_str)
    except ValueError:
        raise ConfigError(f"Invalid port '{port_str}' in listen address '{addr}'.") from None
    if not 0 <= port <= 65535:
        raise ConfigError(f"Port {port} in listen address '{addr}' is out of range.")
    return host, port


class MergedSettings:
    """
    Merges default settings with command-line overrides.

    This class provides a unified, attribute-based access point for all
    supervisor configuration. It follows a clear precedence:
    1. Base values from `settings.py`.
    2. Overrides from the environment / `.env` file (handled by `python-dotenv` in settings.py).
    3. Overrides from the command line for the listener, timeout and child command.
    """

    def __init__(self) -> None:
        """Initializes the settings object by loading defaults."""
        self.CHILD_BINARY: str = ""
        self.CHILD_ARGS: List[str] = []
        self._load_defaults()

    def _load_defaults(self) -> None:
        """
        Loads all uppercase attributes from the settings.py module as defaults.
        """
        for key in dir(default_settings):
            if key.isupper():
                setattr(self, key, getattr(default_settings, key))

    def apply_overrides(self, overrides: Dict[str, Any]) -> None:
        """
        Applies command-line overrides. `None` values leave the default in place.

        :param overrides: A dictionary of uppercase setting names to values.
        """
        for key, value in overrides.items():
            if value is None:
                continue
            if not hasattr(self, key):
                log.warning(f"Override setting '{key}' not found in default settings. Ignoring.")
                continue
            setattr(self, key, value)
            log.debug(f"Overridden setting: {key} = {value}")

    def _as_number(self, key: str, cast: Callable[[Any], Any]) -> Any:
        """
        Converts a setting that may still be a raw environment string.

        :raises ConfigError: If the value is not a valid number.
        """
        value = getattr(self, key)
        try:
            number = cast(value)
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid value for {key}: {value!r}.") from None
        setattr(self, key, number)
        return number

    def validate(self) -> None:
        """
        Rejects configuration the core cannot run with.

        Numeric settings read from the environment are converted here.

        :raises ConfigError: On a malformed or non-positive timeout, a malformed
            listen address, a missing child binary or a bad grace period.
        """
        if self._as_number("TIMEOUT_SECS", int) <= 0:
            raise ConfigError("Timeout must be greater than 0 seconds.")
        parse_listen_addr(self.LISTEN_ADDR)
        if not self.CHILD_BINARY:
            raise ConfigError("No child binary given.")
        kill_grace = self._as_number("KILL_GRACE_PERIOD", float)
        shutdown_grace = self._as_number("SHUTDOWN_GRACE_PERIOD", float)
        if kill_grace < 0 or shutdown_grace < 0:
            raise ConfigError("Grace periods cannot be negative.")

    @property
    def listen_address(self) -> Tuple[str, int]:
        return parse_listen_addr(self.LISTEN_ADDR)

    def get(self, item: str, default: Optional[Any] = None) -> Any:
        """Provides dictionary-like access to settings with a default value."""
        return getattr(self, item, default)


# Create a singleton instance to be imported by other modules
effective_settings = MergedSettings()
