"""
Configuration loading

Settings come from an optional TOML file and the command line; command
line values win. Example file:

    [session]
    address = "rtserve.example.org:16000"
    state_file = "/var/lib/seedlink-client/state"
    net_timeout = 600
    reconnect_delay = 30
    keepalive = 600

    [streams]
    multiselect = "IU_ANMO:BHZ,GE_WLF"
    selectors = "BH?"

    [output]
    verbose = 1
    print_packets = false

    [logging]
    level = "INFO"
"""

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import toml

from .errors import ConfigurationError
from .session_state import (
    DEFAULT_KEEPALIVE, DEFAULT_NET_TIMEOUT, DEFAULT_RECONNECT_DELAY, SessionDescriptor,
)

logger = logging.getLogger(__name__)

# Config file section -> {key in file: SessionConfig field}
_SECTIONS = {
    'session': {
        'address': 'address',
        'state_file': 'state_file',
        'net_timeout': 'net_timeout',
        'reconnect_delay': 'reconnect_delay',
        'keepalive': 'keepalive',
        'client_id': 'client_id',
    },
    'streams': {
        'selectors': 'selectors',
        'multiselect': 'multiselect',
        'streamlist': 'streamlist',
    },
    'output': {
        'verbose': 'verbose',
        'print_packets': 'print_packets',
    },
    'logging': {
        'level': 'log_level',
    },
}

_INT_FIELDS = ('net_timeout', 'reconnect_delay', 'keepalive', 'verbose')
_STR_FIELDS = ('address', 'state_file', 'client_id', 'selectors', 'multiselect', 'streamlist', 'log_level')


@dataclass
class SessionConfig:
    """Resolved client configuration"""
    address: Optional[str] = None
    state_file: Optional[str] = None
    net_timeout: int = DEFAULT_NET_TIMEOUT
    reconnect_delay: int = DEFAULT_RECONNECT_DELAY
    keepalive: int = DEFAULT_KEEPALIVE
    client_id: str = 'seedlink-client'
    selectors: Optional[str] = None
    multiselect: Optional[str] = None
    streamlist: Optional[str] = None
    verbose: int = 0
    print_packets: bool = False
    log_level: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SessionConfig':
        """Build from a parsed TOML document"""
        config = cls()
        for section, keys in _SECTIONS.items():
            values = data.get(section, {})
            if not isinstance(values, dict):
                raise ConfigurationError(f"[{section}] must be a table")
            for key, attr in keys.items():
                if key in values:
                    setattr(config, attr, values[key])

        for name in _INT_FIELDS:
            value = getattr(config, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ConfigurationError(f"{name} must be an integer", repr(value))
        for name in _STR_FIELDS:
            value = getattr(config, name)
            if value is not None and not isinstance(value, str):
                raise ConfigurationError(f"{name} must be a string", repr(value))
        if not isinstance(config.print_packets, bool):
            raise ConfigurationError("print_packets must be true or false", repr(config.print_packets))
        return config

    def merge_args(self, args) -> 'SessionConfig':
        """
        Apply command-line overrides.

        Any attribute of args matching a field name and not None replaces
        the configured value.
        """
        for f in fields(self):
            value = getattr(args, f.name, None)
            if value is not None:
                setattr(self, f.name, value)
        if self.verbose >= 2:
            self.print_packets = True
        return self

    def validate(self):
        if not self.address:
            raise ConfigurationError("no server address specified")
        for name in ('net_timeout', 'reconnect_delay', 'keepalive'):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} must be non-negative", str(getattr(self, name)))
        if self.log_level and not isinstance(logging.getLevelName(str(self.log_level).upper()), int):
            raise ConfigurationError("unknown logging level", str(self.log_level))

    def to_descriptor(self) -> SessionDescriptor:
        self.validate()
        return SessionDescriptor(
            address=self.address,
            net_timeout=self.net_timeout,
            reconnect_delay=self.reconnect_delay,
            keepalive_interval=self.keepalive,
        )


def load_config(config_file: Union[str, Path]) -> SessionConfig:
    """
    Load a TOML configuration file.

    Raises:
        ConfigurationError: if the file is missing or invalid
    """
    try:
        with open(config_file, 'r') as f:
            data = toml.load(f)
    except FileNotFoundError:
        raise ConfigurationError(f"configuration file not found: {config_file}")
    except (OSError, toml.TomlDecodeError) as e:
        raise ConfigurationError(f"error loading configuration {config_file}", str(e))

    logger.debug(f"loaded configuration from {config_file}")
    return SessionConfig.from_dict(data)
