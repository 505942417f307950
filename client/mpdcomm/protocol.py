"""Wire protocol helpers for the mpdcomm client.

Handles line reading, greeting and response parsing, ACK decoding and
command building for the MPD text protocol.  All wire communication
uses UTF-8.
"""

import re
import socket
import time
from typing import List, Optional, Tuple

ENCODING = "utf-8"

GREETING_PREFIX = "OK MPD "

_ACK_RE = re.compile(r"^\[(\d+)@(\d+)\] \{([^}]*)\} ?(.*)$")
_COMMAND_NAME_RE = re.compile(r"^[a-z][a-z0-9_]*$")


class ProtocolError(Exception):
    """Raised on wire protocol violations (unexpected EOF, malformed
    responses, timeouts, socket errors)."""


class CommandCancelledError(Exception):
    """Raised when a command is rejected or abandoned because the
    connection was cancelled."""


class DecodeError(ValueError):
    """Raised when a response block does not match the entity grammar."""


class LineReader:
    """Buffered line reader over a connected socket.

    The socket timeout is used as a poll interval: while waiting for
    data the reader wakes up every *poll_interval* seconds to check the
    *cancel_event*, and gives up with ProtocolError once *timeout*
    seconds pass without a complete line.
    """

    def __init__(self, sock, timeout=30.0, cancel_event=None,
                 poll_interval=0.1):
        self._sock = sock
        self._buf = bytearray()
        self.timeout = timeout
        self.cancel_event = cancel_event
        self.poll_interval = poll_interval
        sock.settimeout(poll_interval)

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise CommandCancelledError("Connection was cancelled")

    def read_line(self) -> str:
        """Read a single line, stripping the trailing LF (and CR)."""
        deadline = time.monotonic() + self.timeout
        while True:
            nl = self._buf.find(b"\n")
            if nl >= 0:
                raw = bytes(self._buf[:nl])
                del self._buf[:nl + 1]
                break

            self._check_cancelled()
            try:
                chunk = self._sock.recv(4096)
            except socket.timeout:
                if time.monotonic() >= deadline:
                    raise ProtocolError(
                        "Timed out waiting for data from server")
                continue
            except OSError as e:
                self._check_cancelled()
                raise ProtocolError("Socket error: {}".format(e))

            if not chunk:
                if self._buf:
                    raise ProtocolError(
                        "Connection closed mid-line (partial data: {!r})".format(
                            bytes(self._buf)))
                raise ProtocolError("Connection closed by server")
            self._buf.extend(chunk)

        try:
            line = raw.decode(ENCODING)
        except UnicodeDecodeError as e:
            raise ProtocolError("Invalid {} in response: {}".format(
                ENCODING, e))
        if line.endswith("\r"):
            line = line[:-1]
        return line


def parse_version(text: str) -> Tuple[int, int, int]:
    """Parse a dotted version string into a (major, minor, micro) triple.

    Missing components default to 0, so "0.20" gives (0, 20, 0).
    """
    parts = text.strip().split(".")
    if not parts or len(parts) > 3:
        raise ProtocolError("Invalid version: {!r}".format(text))
    try:
        numbers = [int(p) for p in parts]
    except ValueError:
        raise ProtocolError("Invalid version: {!r}".format(text))
    while len(numbers) < 3:
        numbers.append(0)
    return (numbers[0], numbers[1], numbers[2])


def read_greeting(reader: LineReader) -> Tuple[int, int, int]:
    """Read the "OK MPD x.y.z" line sent by the server on connect."""
    line = reader.read_line()
    if not line.startswith(GREETING_PREFIX):
        raise ProtocolError("Invalid greeting: {!r}".format(line))
    return parse_version(line[len(GREETING_PREFIX):])


def read_response(reader: LineReader) -> Tuple[str, str, List[str]]:
    """Read a complete command response.

    Returns (status, info, lines) where:
      - status is "OK" or "ACK"
      - info is the ACK text after "ACK " (empty string for OK)
      - lines are the response lines preceding the terminator

    Examples:
      ping     -> ("OK", "", [])
      status   -> ("OK", "", ["volume: 50", "state: stop", ...])
      bogus    -> ("ACK", '[5@0] {} unknown command "bogus"', [])
    """
    lines = []  # type: List[str]
    while True:
        line = reader.read_line()
        if line == "OK":
            return ("OK", "", lines)
        if line.startswith("ACK "):
            return ("ACK", line[4:], lines)
        if line == "ACK":
            return ("ACK", "", lines)
        lines.append(line)


def parse_ack(info: str) -> Tuple[int, int, str, str]:
    """Split ACK info into (code, index, command, message).

    The info string has the form "[<code>@<index>] {<command>} <message>".
    Text that does not match yields code 0 with the whole string as
    the message.
    """
    m = _ACK_RE.match(info)
    if m is None:
        return (0, 0, "", info)
    return (int(m.group(1)), int(m.group(2)), m.group(3), m.group(4))


def is_command_name(name) -> bool:
    """True if *name* looks like an MPD command name."""
    return isinstance(name, str) and _COMMAND_NAME_RE.match(name) is not None


def quote_argument(arg) -> str:
    """Quote one command argument, escaping backslashes and quotes."""
    text = str(arg)
    text = text.replace("\\", "\\\\").replace('"', '\\"')
    return '"{}"'.format(text)


def build_command(name: str, *args) -> str:
    """Build a command line from a command name and its arguments.

    None arguments are skipped so optional parameters can be passed
    through unchanged.
    """
    if not is_command_name(name):
        raise ValueError("Invalid command name: {!r}".format(name))
    if any("\n" in str(a) for a in args if a is not None):
        raise ValueError("Command arguments may not contain newlines")
    parts = [name]
    parts.extend(quote_argument(a) for a in args if a is not None)
    return " ".join(parts)


def send_command(sock: socket.socket, command: str,
                 cancel_event=None) -> None:
    """Send a command line to the server.

    Appends LF and encodes as UTF-8.
    """
    if cancel_event is not None and cancel_event.is_set():
        raise CommandCancelledError("Connection was cancelled")
    data = (command + "\n").encode(ENCODING)
    try:
        sock.sendall(data)
    except OSError as e:
        raise ProtocolError("Socket error: {}".format(e))


def split_key_value(line: str) -> Optional[Tuple[str, str]]:
    """Split a "key: value" line, returning None if it has no separator."""
    key, sep, value = line.partition(":")
    if not sep or not key or " " in key:
        return None
    if value.startswith(" "):
        value = value[1:]
    return (key, value)
