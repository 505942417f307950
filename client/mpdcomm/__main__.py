"""CLI entry point for the mpdcomm client.

Usage::

    mpdcomm --host localhost version
    mpdcomm ls Music/Albums
    mpdcomm playlist --reverse --limit 5
    mpdcomm raw find artist "Nick Drake"
"""

import argparse
import logging
import sys

from . import (
    CommandCancelledError, Directory, MPDError, Music, ProtocolError,
    ThreadSafeConnection, entry_response,
)
from .config import ConfigError, resolve_settings


def _format_duration(seconds):
    if seconds is None:
        return "-"
    seconds = int(seconds)
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return "{}:{:02d}:{:02d}".format(hours, minutes, secs)
    return "{}:{:02d}".format(minutes, secs)


def _format_song(song):
    label = song.title or song.name
    if song.artist:
        label = "{} - {}".format(song.artist, label)
    return "{}\t{}\t{}".format(_format_duration(song.duration), label,
                               song.file)


def _take(iterable, limit):
    for count, item in enumerate(iterable):
        if limit is not None and count >= limit:
            return
        yield item


def cmd_version(conn, args):
    """Handle the 'version' subcommand."""
    print(".".join(str(n) for n in conn.mpd_version))


def cmd_commands(conn, args):
    """Handle the 'commands' subcommand."""
    for name in sorted(conn.connection_status.available_commands or ()):
        print(name)


def cmd_status(conn, args):
    """Handle the 'status' subcommand."""
    for key, value in conn.current_status().items():
        print("{}={}".format(key, value))


def cmd_ls(conn, args):
    """Handle the 'ls' subcommand."""
    entries = entry_response(conn.lsinfo(args.path))
    for entry in (reversed(entries) if args.reverse else entries):
        if isinstance(entry, Directory):
            print("DIR\t{}".format(entry.path))
        elif isinstance(entry, Music):
            print("FILE\t{}".format(_format_song(entry)))
        else:
            print("PLAYLIST\t{}".format(entry.name))


def cmd_playlist(conn, args):
    """Handle the 'playlist' subcommand."""
    songs = conn.playlist_info()
    ordered = reversed(songs) if args.reverse else iter(songs)
    for song in _take(ordered, args.limit):
        pos = song.pos if song.pos is not None else "-"
        print("{}\t{}".format(pos, _format_song(song)))


def cmd_raw(conn, args):
    """Handle the 'raw' subcommand."""
    result = conn.send(args.name, *args.args)
    for line in result.lines():
        print(line)


def main(argv=None) -> None:
    """Parse arguments and dispatch to the appropriate subcommand."""
    parser = argparse.ArgumentParser(
        prog="mpdcomm",
        description="Music Player Daemon client",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Server hostname or IP (default: MPD_HOST, config, localhost)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Server port (default: MPD_PORT, config, 6600)",
    )
    parser.add_argument(
        "--config",
        default=None,
        metavar="PATH",
        help="Path to config file (default: ~/.config/mpdcomm/mpdcomm.conf)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log protocol traffic to stderr",
    )

    subparsers = parser.add_subparsers(dest="command")
    subparsers.required = True

    subparsers.add_parser("version", help="Print the server protocol version")
    subparsers.add_parser("commands", help="List commands the server allows")
    subparsers.add_parser("status", help="Print the player status")

    p_ls = subparsers.add_parser("ls", help="List a database directory")
    p_ls.add_argument("path", nargs="?", default=None,
                      help="Directory to list (default: root)")
    p_ls.add_argument("-r", "--reverse", action="store_true",
                      help="List entries in reverse server order")

    p_pl = subparsers.add_parser("playlist", help="List the current queue")
    p_pl.add_argument("-r", "--reverse", action="store_true",
                      help="Start from the end of the queue")
    p_pl.add_argument("-n", "--limit", type=int, default=None,
                      help="Print at most this many songs")

    p_raw = subparsers.add_parser("raw", help="Send a raw command")
    p_raw.add_argument("name", help="Command name")
    p_raw.add_argument("args", nargs="*", help="Command arguments")

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(name)s %(levelname)s: %(message)s",
        )

    try:
        settings = resolve_settings(args.host, args.port, args.config)
    except ConfigError as e:
        print("Error: {}".format(e), file=sys.stderr)
        sys.exit(1)

    dispatch = {
        "commands": cmd_commands,
        "ls": cmd_ls,
        "playlist": cmd_playlist,
        "raw": cmd_raw,
        "status": cmd_status,
        "version": cmd_version,
    }

    host = settings["host"]
    port = settings["port"]
    try:
        with ThreadSafeConnection(host, port, timeout=settings["timeout"],
                                  password=settings["password"]) as conn:
            dispatch[args.command](conn, args)
    except ConnectionRefusedError:
        print(
            "Error: could not connect to {}:{}".format(host, port),
            file=sys.stderr,
        )
        sys.exit(1)
    except OSError as e:
        print("Error: {}".format(e), file=sys.stderr)
        sys.exit(1)
    except MPDError as e:
        print("Error: {}".format(e.message), file=sys.stderr)
        sys.exit(1)
    except (ProtocolError, CommandCancelledError, ValueError) as e:
        print("Error: {}".format(e), file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
