"""Connection settings for mpdcomm.

Settings are resolved in this order: explicit arguments, the MPD_HOST
and MPD_PORT environment variables, the config file, built-in defaults.
MPD_HOST may carry a password as ``password@host``.

Config file format (INI)::

    [connection]
    host = localhost
    port = 6600
    password = secret
    timeout = 30
"""

import configparser
import os
from typing import Dict, Mapping, Optional, Tuple

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 6600
DEFAULT_TIMEOUT = 30


class ConfigError(ValueError):
    """Raised for unreadable config files and invalid setting values."""


def default_config_path(environ: Optional[Mapping[str, str]] = None) -> str:
    """$MPDCOMM_CONFIG, else mpdcomm.conf under the XDG config dir."""
    if environ is None:
        environ = os.environ
    explicit = environ.get("MPDCOMM_CONFIG")
    if explicit:
        return explicit
    base = environ.get("XDG_CONFIG_HOME") or os.path.join(
        os.path.expanduser("~"), ".config")
    return os.path.join(base, "mpdcomm", "mpdcomm.conf")


def parse_mpd_host(value: str) -> Tuple[Optional[str], Optional[str]]:
    """Split an MPD_HOST value into (host, password)."""
    value = value.strip()
    password = None
    if "@" in value:
        password, _, value = value.rpartition("@")
        password = password or None
    return (value or None, password)


def _parse_port(value, source):
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigError(
            "{} must be an integer, got: {!r}".format(source, value))
    if not 0 < port < 65536:
        raise ConfigError("{} out of range: {}".format(source, port))
    return port


def settings_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict:
    """Read host, password and port from MPD_HOST / MPD_PORT.

    Returns a dict with keys 'host', 'password', 'port' (any may be None).
    """
    if environ is None:
        environ = os.environ
    result = {"host": None, "password": None, "port": None}
    raw_host = environ.get("MPD_HOST")
    if raw_host:
        result["host"], result["password"] = parse_mpd_host(raw_host)
    raw_port = environ.get("MPD_PORT")
    if raw_port:
        result["port"] = _parse_port(raw_port, "MPD_PORT")
    return result


def load_config(path: str, explicit: bool = False) -> Dict:
    """Load settings from a config file.

    Args:
        path: File path to read.
        explicit: True if the caller named the file; a missing file is
            then an error instead of an empty result.

    Returns a dict with keys 'host', 'port', 'password', 'timeout'
    (any may be None), or an empty dict if the file does not exist.
    """
    if not os.path.exists(path):
        if explicit:
            raise ConfigError("config file not found: {}".format(path))
        return {}

    config = configparser.ConfigParser()
    try:
        config.read(path)
    except configparser.Error as e:
        raise ConfigError("failed to parse config file: {}".format(e))

    result = {}

    host = config.get("connection", "host", fallback=None)
    if host is not None:
        host = host.strip() or None
    result["host"] = host

    port = config.get("connection", "port", fallback=None)
    result["port"] = _parse_port(port, "port") if port else None

    password = config.get("connection", "password", fallback=None)
    result["password"] = password or None

    try:
        timeout = config.getfloat("connection", "timeout", fallback=None)
    except ValueError as e:
        raise ConfigError("invalid timeout in config file: {}".format(e))
    if timeout is not None and timeout <= 0:
        raise ConfigError("timeout must be positive, got: {}".format(timeout))
    result["timeout"] = timeout

    return result


def resolve_settings(
    host: Optional[str] = None,
    port: Optional[int] = None,
    config_path: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Dict:
    """Merge arguments, environment, config file and defaults.

    *config_path* names the config file explicitly; when omitted the
    default path is used if it exists.  Returns a dict with keys 'host',
    'port', 'password', 'timeout', none of them None except 'password'.
    """
    if environ is None:
        environ = os.environ
    if config_path is not None:
        file_settings = load_config(config_path, explicit=True)
    else:
        file_settings = load_config(default_config_path(environ))
    env_settings = settings_from_env(environ)

    def pick(key, arg, default):
        for value in (arg, env_settings.get(key), file_settings.get(key)):
            if value is not None:
                return value
        return default

    return {
        "host": pick("host", host, DEFAULT_HOST),
        "port": pick("port", port, DEFAULT_PORT),
        "password": pick("password", None, None),
        "timeout": file_settings.get("timeout") or DEFAULT_TIMEOUT,
    }
