"""Negotiated protocol version and command availability for a connection.

The state is held in one immutable snapshot that writers replace with a
single assignment, so readers on other threads never need a lock and
never observe a half-updated version.
"""

import logging
from collections import namedtuple
from typing import Iterable, Optional, Tuple

from .protocol import is_command_name

logger = logging.getLogger(__name__)

UNKNOWN_VERSION = (0, 0, 0)

_Snapshot = namedtuple("_Snapshot", ["version", "commands"])

_UNKNOWN = _Snapshot(UNKNOWN_VERSION, None)


class ConnectionStatus:
    """Version and available commands learned on connect.

    Until a version is negotiated every version query answers True, and
    until the command list is known every command is reported available.
    """

    def __init__(self) -> None:
        self._snapshot = _UNKNOWN

    def __repr__(self) -> str:
        snap = self._snapshot
        return "ConnectionStatus(version={}, commands={})".format(
            ".".join(str(n) for n in snap.version),
            "unknown" if snap.commands is None else len(snap.commands))

    @property
    def version(self) -> Tuple[int, int, int]:
        """(major, minor, micro); (0, 0, 0) when not negotiated."""
        return self._snapshot.version

    @property
    def available_commands(self) -> Optional[frozenset]:
        """Commands the server advertised, or None if not yet known."""
        return self._snapshot.commands

    @property
    def is_negotiated(self) -> bool:
        return self._snapshot.version != UNKNOWN_VERSION

    def set_version(self, major: int, minor: int, micro: int) -> None:
        self._snapshot = self._snapshot._replace(
            version=(int(major), int(minor), int(micro)))

    def set_available_commands(self, commands: Iterable[str]) -> None:
        """Replace the whole set of available commands."""
        self._snapshot = self._snapshot._replace(
            commands=frozenset(commands))

    def update(self, version: Tuple[int, int, int],
               commands: Iterable[str]) -> None:
        """Replace version and commands together."""
        major, minor, micro = version
        self._snapshot = _Snapshot(
            (int(major), int(minor), int(micro)), frozenset(commands))
        logger.debug("Negotiated protocol %d.%d.%d, %d commands available",
                     major, minor, micro, len(self._snapshot.commands))

    def reset(self) -> None:
        self._snapshot = _UNKNOWN

    def is_protocol_version_supported(self, major: int, minor: int) -> bool:
        """True if not negotiated, or the server is at least major.minor.

        The micro version is ignored; features are not added in
        stable releases.
        """
        version = self._snapshot.version
        if version == UNKNOWN_VERSION:
            return True
        return version[:2] >= (major, minor)

    def is_command_available(self, command: str) -> bool:
        """True if *command* was advertised, or no list is known yet.

        Raises ValueError if *command* is not a valid command name.
        """
        if not is_command_name(command):
            raise ValueError("Invalid command name: {!r}".format(command))
        commands = self._snapshot.commands
        if commands is None:
            return True
        return command in commands
