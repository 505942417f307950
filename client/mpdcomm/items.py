"""Entities decoded from MPD response blocks.

Each entity is built from the text of exactly one block and keeps the
block's ``key: value`` pairs in order.  Entities are immutable and
compare equal when they hold the same pairs.
"""

from typing import List, Optional, Tuple

from .protocol import DecodeError, split_key_value


# Block-start fields of the entity kinds that appear in file listings
# (lsinfo, listallinfo, playlistinfo).  Any of them ends the block of
# another kind.
RESPONSE_FILE = "file"
RESPONSE_DIRECTORY = "directory"
RESPONSE_PLAYLIST = "playlist"

ENTRY_BLOCK_TOKENS = (RESPONSE_FILE, RESPONSE_DIRECTORY, RESPONSE_PLAYLIST)


def _parse_int(value, strict=False):
    # type: (Optional[str], bool) -> Optional[int]
    if value is None:
        return None
    head = value.split("/", 1)[0].strip()
    try:
        return int(head)
    except ValueError:
        if strict:
            raise DecodeError("Expected an integer, got {!r}".format(value))
        return None


def _parse_float(value):
    # type: (Optional[str]) -> Optional[float]
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        raise DecodeError("Expected a number, got {!r}".format(value))


class Item:
    """Base class for entities decoded from one response block.

    Subclasses set ``RESPONSE_KEY`` to the field that must open their
    block.  Raises DecodeError if a line has no ``key: value`` form or
    the block does not open with ``RESPONSE_KEY``.
    """

    RESPONSE_KEY = None  # type: Optional[str]

    __slots__ = ("_pairs",)

    def __init__(self, block: str) -> None:
        pairs = []  # type: List[Tuple[str, str]]
        for line in block.split("\n"):
            if not line:
                continue
            kv = split_key_value(line)
            if kv is None:
                raise DecodeError(
                    "Malformed response line: {!r}".format(line))
            pairs.append(kv)
        if self.RESPONSE_KEY is not None:
            if not pairs or pairs[0][0] != self.RESPONSE_KEY:
                raise DecodeError(
                    "{} block must start with {!r}: {!r}".format(
                        type(self).__name__, self.RESPONSE_KEY, block[:80]))
        self._pairs = tuple(pairs)

    def __eq__(self, other) -> bool:
        if type(other) is not type(self):
            return NotImplemented
        return self._pairs == other._pairs

    def __hash__(self) -> int:
        return hash((type(self).__name__, self._pairs))

    def __repr__(self) -> str:
        if self._pairs:
            return "{}({!r})".format(type(self).__name__, self._pairs[0][1])
        return "{}()".format(type(self).__name__)

    @property
    def pairs(self) -> Tuple[Tuple[str, str], ...]:
        """The block's (key, value) pairs in response order."""
        return self._pairs

    def get(self, key: str, default=None):
        """Return the first value for *key*, or *default*."""
        for k, v in self._pairs:
            if k == key:
                return v
        return default

    def values(self, key: str) -> List[str]:
        """Return every value for *key* (tags such as Artist may repeat)."""
        return [v for k, v in self._pairs if k == key]

    @property
    def last_modified(self) -> Optional[str]:
        return self.get("Last-Modified")


class Music(Item):
    """A song entry, opened by a ``file`` line.

    ``Time``, ``duration``, ``Pos`` and ``Id`` are validated when the
    block is decoded; tag values are returned as the server sent them.
    """

    RESPONSE_KEY = RESPONSE_FILE

    __slots__ = ()

    def __init__(self, block: str) -> None:
        super().__init__(block)
        _parse_int(self.get("Time"), strict=True)
        _parse_float(self.get("duration"))
        _parse_int(self.get("Pos"), strict=True)
        _parse_int(self.get("Id"), strict=True)

    @property
    def file(self) -> str:
        return self._pairs[0][1]

    @property
    def name(self) -> str:
        """Base name of the file, or the full URI for streams."""
        path = self.file
        if "://" in path:
            return path
        return path.rsplit("/", 1)[-1]

    @property
    def title(self) -> Optional[str]:
        return self.get("Title")

    @property
    def artist(self) -> Optional[str]:
        return self.get("Artist")

    @property
    def album(self) -> Optional[str]:
        return self.get("Album")

    @property
    def album_artist(self) -> Optional[str]:
        return self.get("AlbumArtist")

    @property
    def genre(self) -> Optional[str]:
        return self.get("Genre")

    @property
    def date(self) -> Optional[str]:
        return self.get("Date")

    @property
    def track(self) -> Optional[int]:
        """Track number; "3/12" gives 3, non-numeric tags give None."""
        return _parse_int(self.get("Track"))

    @property
    def disc(self) -> Optional[int]:
        return _parse_int(self.get("Disc"))

    @property
    def time(self) -> Optional[int]:
        """Length in whole seconds (``Time``)."""
        return _parse_int(self.get("Time"), strict=True)

    @property
    def duration(self) -> Optional[float]:
        """Length in seconds, preferring the precise ``duration`` field."""
        duration = _parse_float(self.get("duration"))
        if duration is not None:
            return duration
        seconds = self.time
        return float(seconds) if seconds is not None else None

    @property
    def pos(self) -> Optional[int]:
        """Position in the queue, for queue listings."""
        return _parse_int(self.get("Pos"), strict=True)

    @property
    def song_id(self) -> Optional[int]:
        return _parse_int(self.get("Id"), strict=True)

    @property
    def is_stream(self) -> bool:
        return "://" in self.file


class Directory(Item):
    """A directory entry, opened by a ``directory`` line."""

    RESPONSE_KEY = RESPONSE_DIRECTORY

    __slots__ = ()

    @property
    def path(self) -> str:
        return self._pairs[0][1]

    @property
    def name(self) -> str:
        return self.path.rsplit("/", 1)[-1]


class PlaylistFile(Item):
    """A stored playlist entry, opened by a ``playlist`` line."""

    RESPONSE_KEY = RESPONSE_PLAYLIST

    __slots__ = ()

    @property
    def name(self) -> str:
        return self._pairs[0][1]
