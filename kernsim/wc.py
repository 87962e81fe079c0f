"""Count lines, words and bytes."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from typing import BinaryIO, List, Optional

_SPACE = frozenset(b" \r\t\n\v")
_CHUNK = 512


@dataclass(frozen=True)
class WordCount:
    lines: int
    words: int
    chars: int


def count(stream: BinaryIO) -> WordCount:
    """Count newlines, words and bytes read from a binary stream."""
    lines = words = chars = 0
    in_word = False
    for chunk in iter(lambda: stream.read(_CHUNK), b""):
        for byte in chunk:
            chars += 1
            if byte == 0x0A:
                lines += 1
            if byte in _SPACE:
                in_word = False
            elif not in_word:
                words += 1
                in_word = True
    return WordCount(lines, words, chars)


def _report(result: WordCount, name: str) -> None:
    sys.stdout.write(f"{result.lines} {result.words} {result.chars} {name}\n")


def main(argv: Optional[List[str]] = None) -> int:
    """Print counts for each named file, or for standard input if none are named."""
    paths = sys.argv[1:] if argv is None else list(argv)
    if not paths:
        _report(count(sys.stdin.buffer), "")
        return 0
    for path in paths:
        try:
            with open(path, "rb") as stream:
                result = count(stream)
        except OSError:
            sys.stdout.write(f"wc: cannot open {path}\n")
            return 1
        _report(result, path)
    return 0


if __name__ == "__main__":
    sys.exit(main())