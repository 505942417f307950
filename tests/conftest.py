"""Shared fixtures and helpers for mpdcomm tests.

The connection tests talk to FakeMPDServer, a small MPD look-alike
listening on a loopback port.  It answers from a table of canned
responses, keeps a log of every command line it received and supports
a ``hang`` command that never answers, for cancellation tests.

Usage:
    pytest tests/ -v
"""

import os
import socket
import sys
import threading
import time

import pytest

# Add the client library to the path so tests can import mpdcomm
_client_dir = os.path.join(
    os.path.dirname(os.path.dirname(os.path.abspath(__file__))),
    "client",
)
if _client_dir not in sys.path:
    sys.path.insert(0, _client_dir)


# ---------------------------------------------------------------------------
# Canned responses
# ---------------------------------------------------------------------------

PLAYLIST = (
    "file: Albums/Pink Moon/01 Pink Moon.flac\n"
    "Last-Modified: 2019-03-01T10:00:00Z\n"
    "Artist: Nick Drake\n"
    "Title: Pink Moon\n"
    "Album: Pink Moon\n"
    "Track: 1/11\n"
    "Time: 124\n"
    "duration: 124.213\n"
    "Pos: 0\n"
    "Id: 7\n"
    "file: Albums/Pink Moon/02 Place To Be.flac\n"
    "Artist: Nick Drake\n"
    "Title: Place To Be\n"
    "Time: 163\n"
    "Pos: 1\n"
    "Id: 8\n"
    "file: http://radio.example.com/stream\n"
    "Name: Example Radio\n"
    "Pos: 2\n"
    "Id: 9\n"
)

LSINFO = (
    "directory: Albums\n"
    "Last-Modified: 2020-01-01T00:00:00Z\n"
    "file: intro.mp3\n"
    "Time: 10\n"
    "Title: Intro\n"
    "directory: Singles\n"
    "Last-Modified: 2020-02-01T00:00:00Z\n"
    "file: outro.mp3\n"
    "Time: 20\n"
    "playlist: Favourites\n"
    "Last-Modified: 2021-05-05T12:00:00Z\n"
)

DEFAULT_RESPONSES = {
    "ping": "",
    "status": (
        "volume: 50\n"
        "repeat: 0\n"
        "random: 1\n"
        "playlistlength: 3\n"
        "state: play\n"
    ),
    "playlistinfo": PLAYLIST,
    "listallinfo": PLAYLIST,
    "lsinfo": LSINFO,
    "listplaylists": (
        "playlist: Favourites\n"
        "Last-Modified: 2021-05-05T12:00:00Z\n"
        "playlist: Road Trip\n"
        "Last-Modified: 2021-06-01T08:30:00Z\n"
    ),
    "clear": "",
    "play": "ACK [2@0] {play} Bad song index\n",
}

DEFAULT_COMMANDS = [
    "clear", "close", "commands", "listallinfo", "listplaylists", "lsinfo",
    "password", "ping", "play", "playlistinfo", "status",
]


# ---------------------------------------------------------------------------
# Fake server
# ---------------------------------------------------------------------------

class FakeMPDServer:
    """A minimal MPD server on 127.0.0.1, one thread per client.

    ``responses`` maps command names to response bodies; the OK
    terminator is appended unless the body is an ACK line.  Unknown
    commands get ACK 5.
    """

    def __init__(self, version="0.20.0", responses=None, commands=None,
                 password=None, greeting=None):
        self.version = version
        self.greeting = greeting
        self.password = password
        self.responses = dict(DEFAULT_RESPONSES)
        if responses:
            self.responses.update(responses)
        self.commands = list(
            DEFAULT_COMMANDS if commands is None else commands)
        self.received = []
        self.connections = 0
        self.hang_started = threading.Event()
        self.release = threading.Event()
        self._lock = threading.Lock()
        self._stop = threading.Event()

        self._listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._listener.bind(("127.0.0.1", 0))
        self._listener.listen(8)
        self._listener.settimeout(0.1)
        self.host, self.port = self._listener.getsockname()

        self._thread = threading.Thread(target=self._accept_loop, daemon=True)
        self._thread.start()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self):
        self._stop.set()
        self.release.set()
        self._thread.join(2)
        self._listener.close()

    def commands_received(self):
        """Command names received so far, in order."""
        with self._lock:
            return [line.split(" ", 1)[0] for line in self.received]

    def _accept_loop(self):
        while not self._stop.is_set():
            try:
                client, _addr = self._listener.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            client.settimeout(None)
            threading.Thread(
                target=self._serve, args=(client,), daemon=True).start()

    def _serve(self, client):
        with self._lock:
            self.connections += 1
        try:
            greeting = self.greeting
            if greeting is None:
                greeting = "OK MPD {}".format(self.version)
            client.sendall((greeting + "\n").encode("utf-8"))
            for raw in client.makefile("rb"):
                line = raw.decode("utf-8").rstrip("\r\n")
                with self._lock:
                    self.received.append(line)
                reply = self._reply(line)
                if reply is None:
                    break
                if reply:
                    client.sendall(reply.encode("utf-8"))
        except OSError:
            pass
        finally:
            client.close()

    def _reply(self, line):
        name = line.split(" ", 1)[0]
        if name == "close":
            return None
        if name == "hang":
            self.hang_started.set()
            self.release.wait(10)
            return ""
        if name == "password":
            expected = 'password "{}"'.format(self.password)
            if self.password is not None and line != expected:
                return "ACK [3@0] {password} incorrect password\n"
            return "OK\n"
        if name == "commands":
            return "".join(
                "command: {}\n".format(c) for c in self.commands) + "OK\n"
        if name in self.responses:
            body = self.responses[name]
            if body.startswith("ACK "):
                return body
            return body + "OK\n"
        return 'ACK [5@0] {{}} unknown command "{}"\n'.format(name)


def wait_for(predicate, timeout=5.0):
    """Poll *predicate* until it is true or *timeout* seconds pass."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def mpd_server():
    """A running FakeMPDServer with the default responses."""
    server = FakeMPDServer()
    yield server
    server.close()


@pytest.fixture
def connection(mpd_server):
    """A ThreadSafeConnection connected to ``mpd_server``.

    Disconnected automatically on teardown.
    """
    from mpdcomm import ThreadSafeConnection

    conn = ThreadSafeConnection(timeout=5)
    conn.connect(mpd_server.host, mpd_server.port)
    yield conn
    conn.cancel()
    conn.disconnect()
