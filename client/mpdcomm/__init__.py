"""mpdcomm -- Python client library for the Music Player Daemon.

Provides ThreadSafeConnection, a connection facade that serializes
commands from any number of threads over one socket, the thread-unsafe
MonoIOConnection it wraps, lazily decoded entity responses, and an
exception hierarchy mapping MPD ACK codes to Python exceptions.

Usage::

    with ThreadSafeConnection("localhost") as mpd:
        print(mpd.mpd_version)
        for song in mpd.playlist_info():
            print(song.artist, song.title)
"""

import enum
import logging
import socket
import threading
from typing import Dict, Optional, Tuple, Type

from .config import DEFAULT_PORT, DEFAULT_TIMEOUT
from .items import Directory, Item, Music, PlaylistFile
from .protocol import (
    CommandCancelledError, DecodeError, LineReader, ProtocolError,
    build_command, parse_ack, read_greeting, read_response, send_command,
)
from .response import (
    BlockTokenizer, CommandResult, EntityResponse, ResultIterator,
    directory_response, entry_response, music_response,
    playlist_file_response,
)
from .status import ConnectionStatus


__all__ = [
    "ThreadSafeConnection",
    "MonoIOConnection",
    "ConnectionState",
    "ConnectionStatus",
    "CommandResult",
    "EntityResponse",
    "ResultIterator",
    "BlockTokenizer",
    "Item",
    "Music",
    "Directory",
    "PlaylistFile",
    "music_response",
    "directory_response",
    "entry_response",
    "playlist_file_response",
    "MPDError",
    "NotListError",
    "ArgumentError",
    "PasswordError",
    "PermissionDeniedError",
    "UnknownCommandError",
    "NoExistError",
    "PlaylistMaxError",
    "ServerSystemError",
    "PlaylistLoadError",
    "UpdateAlreadyError",
    "PlayerSyncError",
    "ExistError",
    "ConnectionStateError",
    "CommandCancelledError",
    "DecodeError",
    "ProtocolError",
]

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------

class MPDError(Exception):
    """Base exception for MPD ACK responses.

    Attributes:
        code: Numeric ACK error code (e.g. 2, 50).
        index: Position of the failing command within a command list.
        command: Name of the command that failed, as reported by MPD.
        message: Human-readable error message from the server.
    """

    code = 0

    def __init__(self, message: str, command: str = "", index: int = 0,
                 code: Optional[int] = None) -> None:
        if code is not None:
            self.code = code
        self.message = message
        self.command = command
        self.index = index
        super().__init__("ACK [{}@{}] {{{}}} {}".format(
            self.code, index, command, message))


class NotListError(MPDError):
    """Error 1 -- command_list_end without a matching begin."""
    code = 1


class ArgumentError(MPDError):
    """Error 2 -- wrong number or malformed arguments."""
    code = 2


class PasswordError(MPDError):
    """Error 3 -- incorrect password."""
    code = 3


class PermissionDeniedError(MPDError):
    """Error 4 -- the connection lacks permission for the command."""
    code = 4


class UnknownCommandError(MPDError):
    """Error 5 -- the server does not know the command."""
    code = 5


class NoExistError(MPDError):
    """Error 50 -- song, directory or playlist does not exist."""
    code = 50


class PlaylistMaxError(MPDError):
    """Error 51 -- the queue or a stored playlist is full."""
    code = 51


class ServerSystemError(MPDError):
    """Error 52 -- system error on the server (I/O, out of memory)."""
    code = 52


class PlaylistLoadError(MPDError):
    """Error 53 -- a stored playlist could not be loaded."""
    code = 53


class UpdateAlreadyError(MPDError):
    """Error 54 -- a database update is already running."""
    code = 54


class PlayerSyncError(MPDError):
    """Error 55 -- the player is not in a state to accept the command."""
    code = 55


class ExistError(MPDError):
    """Error 56 -- the target already exists."""
    code = 56


class ConnectionStateError(RuntimeError):
    """Raised when the connection is in the wrong state for an operation
    (not connected, no host configured, a command still in progress)."""


# Map ACK codes to exception classes.  Unknown codes fall back to the
# base MPDError.
_ERROR_MAP = {
    cls.code: cls for cls in (
        NotListError, ArgumentError, PasswordError, PermissionDeniedError,
        UnknownCommandError, NoExistError, PlaylistMaxError,
        ServerSystemError, PlaylistLoadError, UpdateAlreadyError,
        PlayerSyncError, ExistError,
    )
}  # type: Dict[int, Type[MPDError]]


def _raise_for_error(info: str) -> None:
    """Parse an ACK info string and raise the appropriate exception.

    The info string has the form "[<code>@<index>] {<command>} <message>"
    (e.g. '[50@0] {lsinfo} No such directory').
    """
    code, index, command, message = parse_ack(info)
    exc_class = _ERROR_MAP.get(code)
    if exc_class is not None:
        raise exc_class(message, command, index)
    raise MPDError(message, command, index, code=code)


# ---------------------------------------------------------------------------
# Thread-unsafe connection
# ---------------------------------------------------------------------------

class MonoIOConnection:
    """A single connection to an MPD server, without any locking.

    Commands must not be sent from more than one thread at a time;
    ThreadSafeConnection provides that guarantee.  ``cancel()`` is the
    one method that may be called from another thread: it makes the
    command in progress give up within *poll_interval* seconds.
    """

    def __init__(self, timeout: float = DEFAULT_TIMEOUT,
                 poll_interval: float = 0.1) -> None:
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._sock = None  # type: Optional[socket.socket]
        self._reader = None  # type: Optional[LineReader]
        self._host = None  # type: Optional[str]
        self._port = None  # type: Optional[int]
        self._version = None  # type: Optional[Tuple[int, int, int]]
        self._cancel_event = threading.Event()

    def __repr__(self) -> str:
        if self._sock is None:
            return "MonoIOConnection(disconnected)"
        return "MonoIOConnection({!r}, port={}, connected)".format(
            self._host, self._port)

    # -- Connection lifecycle ----------------------------------------------

    def connect(self, host: str, port: int = DEFAULT_PORT,
                password: Optional[str] = None) -> None:
        """Open the socket, read the greeting and authenticate.

        An open connection is closed first.  Clears a previous cancel.
        """
        if self._sock is not None:
            self.disconnect()
        self._cancel_event.clear()

        logger.debug("Connecting to %s:%d", host, port)
        sock = socket.create_connection((host, port), timeout=self.timeout)
        reader = LineReader(sock, self.timeout, self._cancel_event,
                            self.poll_interval)
        try:
            version = read_greeting(reader)
        except Exception:
            sock.close()
            raise
        self._sock = sock
        self._reader = reader
        self._host = host
        self._port = port
        self._version = version

        if password is not None:
            try:
                self.send("password", password)
            except Exception:
                self._close_socket()
                raise
        logger.info("Connected to %s:%d (protocol %d.%d.%d)",
                    host, port, *version)

    def disconnect(self) -> None:
        """Send close (best-effort) and close the socket."""
        if self._sock is None:
            return
        try:
            send_command(self._sock, "close")
        except ProtocolError as e:
            logger.debug("close command not delivered: %s", e)
        logger.info("Disconnected from %s:%s", self._host, self._port)
        self._close_socket()

    def cancel(self) -> None:
        """Reject further commands until the next connect()."""
        self._cancel_event.set()

    def _close_socket(self) -> None:
        sock = self._sock
        self._sock = None
        self._reader = None
        self._host = None
        self._port = None
        self._version = None
        if sock is not None:
            try:
                sock.close()
            except OSError as e:
                logger.debug("Error closing socket: %s", e)

    @property
    def is_connected(self) -> bool:
        return self._sock is not None

    @property
    def is_cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def host(self) -> Optional[str]:
        return self._host

    @property
    def port(self) -> Optional[int]:
        return self._port

    @property
    def version(self) -> Optional[Tuple[int, int, int]]:
        """Protocol version from the greeting, or None if not connected."""
        return self._version

    # -- Commands ----------------------------------------------------------

    def send(self, command: str, *args) -> CommandResult:
        """Send a command and read the response.

        Returns the CommandResult on OK.  Raises the appropriate MPDError
        subclass on ACK, ProtocolError on framing or socket failures and
        CommandCancelledError after cancel().  A failure in the middle
        of a response leaves the stream unusable, so the socket is
        closed.
        """
        if self._cancel_event.is_set():
            raise CommandCancelledError("Connection was cancelled")
        if self._sock is None:
            raise ConnectionStateError("Not connected")
        line = build_command(command, *args)
        logger.debug("> %s", "password ***" if command == "password" else line)
        try:
            send_command(self._sock, line, self._cancel_event)
            status, info, lines = read_response(self._reader)
        except (ProtocolError, CommandCancelledError) as e:
            logger.debug("Command %r abandoned: %s", command, e)
            self._close_socket()
            raise
        if status == "ACK":
            _raise_for_error(info)
        return CommandResult.from_lines(lines, line)


# ---------------------------------------------------------------------------
# Thread-safe facade
# ---------------------------------------------------------------------------

class ConnectionState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CANCELLED = "cancelled"


class ThreadSafeConnection:
    """A connection to an MPD server that may be shared between threads.

    Every command, including the ones issued while connecting, runs
    inside one lock, so at most one command is on the wire at a time.
    Version and command-availability queries read an immutable snapshot
    and never wait for that lock.

    Can be used as a context manager::

        with ThreadSafeConnection("localhost") as mpd:
            print(mpd.current_status()["state"])

    Or managed manually::

        mpd = ThreadSafeConnection()
        mpd.set_default_password("secret")
        mpd.connect("localhost", 6600)
        try:
            songs = mpd.list_all_info()
        finally:
            mpd.disconnect()
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: int = DEFAULT_PORT,
        timeout: float = DEFAULT_TIMEOUT,
        password: Optional[str] = None,
    ) -> None:
        self._connection = MonoIOConnection(timeout)
        self._status = ConnectionStatus()
        self._command_lock = threading.Lock()
        self._cancelled = threading.Event()
        self._state = ConnectionState.DISCONNECTED
        self._default_host = host
        self._default_port = port
        self._default_password = password
        self._host = None  # type: Optional[str]
        self._port = None  # type: Optional[int]

    # -- Context manager ---------------------------------------------------

    def __enter__(self) -> "ThreadSafeConnection":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore
        self.disconnect()
        return None

    def __repr__(self) -> str:
        return "ThreadSafeConnection({!r}, port={}, {})".format(
            self._host or self._default_host,
            self._port or self._default_port,
            self.state.value)

    # -- Connection lifecycle ----------------------------------------------

    def connect(self, host: Optional[str] = None,
                port: Optional[int] = None) -> None:
        """Connect to *host*/*port*, or to the defaults if omitted.

        Reads the protocol version and the list of available commands
        before returning.  Connecting while connected closes the current
        connection first.  A successful connect clears a cancel();
        a failed one leaves it in place.  The host and port become the
        defaults for later argument-less calls.
        """
        if host is None:
            host = self._default_host
            if host is None:
                raise ConnectionStateError(
                    "No host given and no default host configured")
        if port is None:
            port = self._default_port

        with self._command_lock:
            was_cancelled = self._cancelled.is_set()
            self._cancelled.clear()
            if self._connection.is_connected:
                logger.info("Reconnecting to %s:%d", host, port)
                self._connection.disconnect()
            self._status.reset()
            self._host = None
            self._port = None
            self._state = ConnectionState.CONNECTING
            try:
                self._connection.connect(host, port, self._default_password)
                commands = self._connection.send("commands").values("command")
            except Exception:
                self._connection.disconnect()
                self._state = ConnectionState.DISCONNECTED
                if was_cancelled:
                    self._cancelled.set()
                raise
            self._status.update(self._connection.version, commands)
            self._host = host
            self._port = port
            self._default_host = host
            self._default_port = port
            self._state = ConnectionState.CONNECTED

    def disconnect(self) -> None:
        """Close the connection; a no-op when already disconnected.

        Raises ConnectionStateError if a command still holds the
        connection after the timeout; call cancel() first to abort it.
        """
        if not self._command_lock.acquire(timeout=self._connection.timeout):
            raise ConnectionStateError(
                "A command is still in progress; cancel() it first")
        try:
            self._connection.disconnect()
            self._mark_disconnected()
        finally:
            self._command_lock.release()

    def cancel(self) -> None:
        """Fail the command in progress and every later one until the
        next successful connect().  Never blocks.  An idle connection stays
        open; a command abandoned mid-reply closes it."""
        logger.info("Cancelling commands to %s:%s", self._host, self._port)
        self._cancelled.set()
        self._connection.cancel()

    def set_default_password(self, password: Optional[str]) -> None:
        """Password sent by later connect() calls; an open connection is
        not re-authenticated."""
        self._default_password = password

    # -- Read-only state ---------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        state = self._state
        if self._cancelled.is_set() and state is not ConnectionState.DISCONNECTED:
            return ConnectionState.CANCELLED
        return state

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def connection_status(self) -> ConnectionStatus:
        return self._status

    @property
    def host_address(self) -> Optional[str]:
        """The connected host, or None if not connected."""
        return self._host

    @property
    def host_port(self) -> Optional[int]:
        """The connected port, or None if not connected."""
        return self._port

    @property
    def mpd_version(self) -> Tuple[int, int, int]:
        """Negotiated protocol version; (0, 0, 0) if not connected."""
        return self._status.version

    @property
    def thread_unsafe_connection(self) -> MonoIOConnection:
        """The wrapped connection, bypassing the command lock.

        Callers using it are responsible for their own synchronization.
        """
        return self._connection

    def is_command_available(self, command: str) -> bool:
        return self._status.is_command_available(command)

    def is_protocol_version_supported(self, major: int, minor: int) -> bool:
        return self._status.is_protocol_version_supported(major, minor)

    # -- Commands ----------------------------------------------------------

    def _check_cancelled(self) -> None:
        if self._cancelled.is_set():
            raise CommandCancelledError(
                "Connection was cancelled; connect() again to continue")

    def send(self, command: str, *args) -> CommandResult:
        """Send a command under the connection lock.

        Returns the CommandResult on OK.  Raises MPDError subclasses on
        ACK, ProtocolError when the connection fails (the facade is then
        disconnected), ConnectionStateError when not connected and
        CommandCancelledError after cancel().
        """
        self._check_cancelled()
        with self._command_lock:
            self._check_cancelled()
            if self._state is not ConnectionState.CONNECTED:
                raise ConnectionStateError("Not connected")
            try:
                return self._connection.send(command, *args)
            except ProtocolError:
                logger.warning("Connection to %s:%s lost", self._host,
                               self._port)
                self._mark_disconnected()
                raise
            except CommandCancelledError:
                # An abandoned reply closes the socket; the cancel flag
                # stays set until the next connect().
                if not self._connection.is_connected:
                    self._mark_disconnected()
                raise

    def _mark_disconnected(self) -> None:
        self._status.reset()
        self._host = None
        self._port = None
        self._state = ConnectionState.DISCONNECTED

    def ping(self) -> None:
        self.send("ping")

    def current_status(self) -> Dict[str, str]:
        """The player status (``status`` command) as a dict."""
        return self.send("status").as_dict()

    def lsinfo(self, path: Optional[str] = None) -> CommandResult:
        """Raw listing of one database directory.

        The result mixes songs, directories and playlists; wrap it with
        music_response(), directory_response() or
        playlist_file_response() to pick one kind, or with
        entry_response() to keep all of them in server order.
        """
        return self.send("lsinfo", path)

    def list_all_info(self, path: Optional[str] = None) -> EntityResponse:
        """Every song below *path* (the whole database by default)."""
        return music_response(self.send("listallinfo", path))

    def playlist_info(self) -> EntityResponse:
        """The songs in the current queue."""
        return music_response(self.send("playlistinfo"))

    def list_playlists(self) -> EntityResponse:
        """The stored playlists."""
        return playlist_file_response(self.send("listplaylists"))
