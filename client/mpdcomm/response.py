"""Lazy decoding of multi-line MPD responses into entities.

A list-type response is a run of blocks, each opened by a block-start
field (``file: ...``, ``directory: ...``) and continued by ``key: value``
lines.  BlockTokenizer finds block boundaries by scanning the response
text in place; ResultIterator walks blocks in either direction and hands
each block to an entity factory only when it is reached; EntityResponse
wraps both behind a sequence-like interface.

Usage::

    result = conn.send("lsinfo", "Music")
    for song in music_response(result):
        print(song.file)
    newest = next(reversed(music_response(conn.send("listallinfo"))))
"""

import re
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from .items import (
    ENTRY_BLOCK_TOKENS, RESPONSE_DIRECTORY, RESPONSE_FILE, RESPONSE_PLAYLIST,
    Directory, Music, PlaylistFile,
)
from .protocol import DecodeError, split_key_value


# ---------------------------------------------------------------------------
# Command result
# ---------------------------------------------------------------------------

class CommandResult:
    """The raw text of one command's response, minus the OK terminator.

    Every line, including the last, ends with LF.  Instances are
    immutable and can be shared between threads.
    """

    __slots__ = ("_command", "_text")

    def __init__(self, text: str = "", command: str = "") -> None:
        self._text = text
        self._command = command

    @classmethod
    def from_lines(cls, lines: Sequence[str], command: str = "") -> "CommandResult":
        return cls("".join(line + "\n" for line in lines), command)

    def __repr__(self) -> str:
        return "CommandResult({!r}, {} bytes)".format(
            self._command, len(self._text))

    def __str__(self) -> str:
        return self._text

    def __eq__(self, other) -> bool:
        if not isinstance(other, CommandResult):
            return NotImplemented
        return self._text == other._text and self._command == other._command

    def __hash__(self) -> int:
        return hash((self._command, self._text))

    @property
    def text(self) -> str:
        return self._text

    @property
    def command(self) -> str:
        """The command line that produced this result."""
        return self._command

    def is_empty(self) -> bool:
        return not self._text

    def lines(self) -> Iterator[str]:
        return (line for line in self._text.split("\n") if line)

    def key_values(self) -> Iterator:
        """Yield (key, value) pairs, raising DecodeError on bad lines."""
        for line in self.lines():
            kv = split_key_value(line)
            if kv is None:
                raise DecodeError(
                    "Malformed response line: {!r}".format(line))
            yield kv

    def values(self, key: str) -> List[str]:
        """Every value stored under *key*, in order."""
        return [v for k, v in self.key_values() if k == key]

    def single_value(self, key: str) -> Optional[str]:
        """The first value stored under *key*, or None."""
        for k, v in self.key_values():
            if k == key:
                return v
        return None

    def as_dict(self) -> Dict[str, str]:
        """Map keys to values; a repeated key keeps its last value."""
        return dict(self.key_values())


# ---------------------------------------------------------------------------
# Block tokenizer
# ---------------------------------------------------------------------------

def _token_pattern(tokens):
    return re.compile(
        "^(?:{}):".format("|".join(re.escape(t) for t in tokens)),
        re.MULTILINE)


class BlockTokenizer:
    """Locate blocks within a response text without splitting it.

    *begin_tokens* are the fields that open a block of the wanted kind.
    *block_tokens* are the fields that end any block; they default to
    *begin_tokens* and always include them.  Only positions at the start
    of a line are ever returned.
    """

    def __init__(self, text: str, begin_tokens: Sequence[str],
                 block_tokens: Optional[Sequence[str]] = None) -> None:
        if isinstance(begin_tokens, str) or not begin_tokens:
            raise ValueError("begin_tokens must be a non-empty sequence")
        self.text = text
        begin = tuple(begin_tokens)
        block = tuple(block_tokens) if block_tokens else ()
        block += tuple(t for t in begin if t not in block)
        self._begin_prefixes = tuple(t + ":" for t in begin)
        self._begin_re = _token_pattern(begin)
        self._block_re = _token_pattern(block)

    def count(self) -> int:
        """Number of blocks opened by a begin token."""
        return sum(1 for _ in self._begin_re.finditer(self.text))

    def next_block_start(self, pos: int) -> int:
        """Start of the first block at or after line start *pos*, or -1."""
        m = self._begin_re.search(self.text, pos)
        return m.start() if m is not None else -1

    def block_end(self, start: int) -> int:
        """End of the block opened at *start*.

        This is the start of the next line holding any block token, or
        the end of the text.
        """
        nl = self.text.find("\n", start)
        if nl < 0:
            return len(self.text)
        m = self._block_re.search(self.text, nl + 1)
        return m.start() if m is not None else len(self.text)

    def previous_block_start(self, pos: int) -> int:
        """Start of the last block opening before line start *pos*, or -1."""
        text = self.text
        while pos > 0:
            line_start = text.rfind("\n", 0, pos - 1) + 1
            if text.startswith(self._begin_prefixes, line_start):
                return line_start
            pos = line_start
        return -1


# ---------------------------------------------------------------------------
# Typed result iterator
# ---------------------------------------------------------------------------

class ResultIterator:
    """Bidirectional iterator decoding one block per step.

    The position is the index of the current block: -1 before the
    first block, *count* after the last one.  ``next()`` moves to the
    following block and ``previous()`` to the preceding one, each
    returning ``factory(block_text)``.  Both raise StopIteration at the
    boundaries without moving.

    A DecodeError from the factory propagates once the position has
    moved, so the caller can step past a bad block.
    """

    def __init__(self, tokenizer: BlockTokenizer, factory: Callable,
                 position: int = -1, count: Optional[int] = None) -> None:
        if count is None:
            count = tokenizer.count()
        if position < -1 or position > count:
            raise ValueError(
                "Position {} out of range [-1, {}]".format(position, count))
        self._tokenizer = tokenizer
        self._factory = factory
        self._count = count

        # Character range of the current block.
        self._position = -1
        self._start = 0
        self._end = 0

        if position + 1 <= count - position:
            while self._position < position:
                self._step_forward()
        else:
            self._position = count
            self._start = self._end = len(tokenizer.text)
            while self._position > position:
                self._step_backward()

    def __iter__(self) -> "ResultIterator":
        return self

    def __next__(self):
        if not self.has_next():
            raise StopIteration
        self._step_forward()
        return self._decode()

    next = __next__

    def __repr__(self) -> str:
        return "ResultIterator(position={}, count={})".format(
            self._position, self._count)

    @property
    def position(self) -> int:
        return self._position

    def has_next(self) -> bool:
        return self._position + 1 < self._count

    def has_previous(self) -> bool:
        return self._position - 1 >= 0

    def next_index(self) -> int:
        return self._position + 1

    def previous_index(self) -> int:
        return self._position - 1

    def previous(self):
        """Move to the preceding block and decode it."""
        if not self.has_previous():
            raise StopIteration
        self._step_backward()
        return self._decode()

    def remove(self) -> None:
        raise TypeError("ResultIterator is a read-only view of a response")

    def _step_forward(self) -> None:
        start = self._tokenizer.next_block_start(self._end)
        self._start = start
        self._end = self._tokenizer.block_end(start)
        self._position += 1

    def _step_backward(self) -> None:
        start = self._tokenizer.previous_block_start(self._start)
        self._start = start
        self._end = self._tokenizer.block_end(start)
        self._position -= 1

    def _decode(self):
        return self._factory(self._tokenizer.text[self._start:self._end])


# ---------------------------------------------------------------------------
# Entity response
# ---------------------------------------------------------------------------

class EntityResponse:
    """Sequence-like view of one response, decoded into one entity type.

    Nothing is decoded until it is iterated or indexed; ``to_list()``
    materializes every entity explicitly.

    *result* is a CommandResult or the raw response text.  *factory*
    builds an entity from one block's text.
    """

    def __init__(self, result, factory: Callable,
                 begin_tokens: Sequence[str],
                 block_tokens: Optional[Sequence[str]] = None) -> None:
        if isinstance(result, CommandResult):
            result = result.text
        self._tokenizer = BlockTokenizer(result, begin_tokens, block_tokens)
        self._factory = factory
        self._size = None  # type: Optional[int]

    def __repr__(self) -> str:
        return "EntityResponse({}, size={})".format(
            getattr(self._factory, "__name__", self._factory), self.size())

    @property
    def text(self) -> str:
        return self._tokenizer.text

    def size(self) -> int:
        if self._size is None:
            self._size = self._tokenizer.count()
        return self._size

    def __len__(self) -> int:
        return self.size()

    def is_empty(self) -> bool:
        return self._tokenizer.next_block_start(0) < 0

    def iterator(self, from_start: bool = True) -> ResultIterator:
        """Iterator before the first block, or after the last one."""
        return self.list_iterator(-1 if from_start else self.size())

    def list_iterator(self, position: int) -> ResultIterator:
        return ResultIterator(
            self._tokenizer, self._factory, position, self.size())

    def __iter__(self) -> ResultIterator:
        return self.iterator(True)

    def __reversed__(self):
        it = self.iterator(False)
        while it.has_previous():
            yield it.previous()

    def __getitem__(self, index: int):
        if not isinstance(index, int):
            raise TypeError(
                "EntityResponse indices must be integers, not {}".format(
                    type(index).__name__))
        size = self.size()
        if index < 0:
            index += size
        if index < 0 or index >= size:
            raise IndexError("EntityResponse index out of range")
        if index < size - index:
            return next(self.list_iterator(index - 1))
        return self.list_iterator(index + 1).previous()

    def to_list(self) -> list:
        return list(self)


def music_response(result) -> EntityResponse:
    """Songs from a listing; directories and playlists are skipped."""
    return EntityResponse(result, Music, (RESPONSE_FILE,), ENTRY_BLOCK_TOKENS)


def directory_response(result) -> EntityResponse:
    return EntityResponse(
        result, Directory, (RESPONSE_DIRECTORY,), ENTRY_BLOCK_TOKENS)


def playlist_file_response(result) -> EntityResponse:
    return EntityResponse(
        result, PlaylistFile, (RESPONSE_PLAYLIST,), ENTRY_BLOCK_TOKENS)


_ENTRY_TYPES = {
    RESPONSE_FILE: Music,
    RESPONSE_DIRECTORY: Directory,
    RESPONSE_PLAYLIST: PlaylistFile,
}


def _entry(block):
    key = block.partition(":")[0]
    return _ENTRY_TYPES[key](block)


def entry_response(result) -> EntityResponse:
    """Songs, directories and playlists of a listing in server order."""
    return EntityResponse(result, _entry, ENTRY_BLOCK_TOKENS)
