"""NUL-terminated byte-string and memory helpers."""

from __future__ import annotations

from itertools import islice, takewhile
from typing import BinaryIO, Optional, Union

BytesLike = Union[bytes, bytearray, memoryview, str]


def _as_bytes(s: BytesLike) -> bytes:
    if isinstance(s, str):
        return s.encode("latin-1")
    return bytes(s)


def _cstr(s: BytesLike) -> bytes:
    """The bytes of s up to, not including, the first NUL."""
    b = _as_bytes(s)
    nul = b.find(0)
    return b if nul < 0 else b[:nul]


def memcmp(a: BytesLike, b: BytesLike, n: int) -> int:
    """Compare the first n bytes; return the difference at the first mismatch."""
    a, b = _as_bytes(a), _as_bytes(b)
    if n < 0 or n > len(a) or n > len(b):
        raise ValueError(f"cannot compare {n} bytes")
    for x, y in zip(a[:n], b[:n]):
        if x != y:
            return x - y
    return 0


def memmove(buffer: bytearray, dst: int, src: int, n: int) -> bytearray:
    """Copy n bytes within buffer from src to dst; overlapping ranges are safe."""
    if n < 0 or dst < 0 or src < 0 or dst + n > len(buffer) or src + n > len(buffer):
        raise IndexError("memmove range outside buffer")
    buffer[dst : dst + n] = buffer[src : src + n]
    return buffer


def _compare(p: bytes, q: bytes, limit: Optional[int]) -> int:
    pairs = zip(_cstr(p) + b"\0", _cstr(q) + b"\0")
    if limit is not None:
        pairs = islice(pairs, max(limit, 0))
    for x, y in pairs:
        if x != y or x == 0:
            return x - y
    return 0


def strncmp(p: BytesLike, q: BytesLike, n: int) -> int:
    """Compare at most n characters of two C strings."""
    return _compare(_as_bytes(p), _as_bytes(q), n)


def strcmp(p: BytesLike, q: BytesLike) -> int:
    """Compare two C strings."""
    return _compare(_as_bytes(p), _as_bytes(q), None)


def strncpy(src: BytesLike, n: int) -> bytes:
    """The n bytes a strncpy into an n-byte buffer would write: copied, then zero padded."""
    if n <= 0:
        return b""
    return _cstr(src)[:n].ljust(n, b"\0")


def safestrcpy(src: BytesLike, n: int) -> bytes:
    """Like strncpy, but always NUL-terminated; returns the bytes written."""
    if n <= 0:
        return b""
    return _cstr(src)[: n - 1] + b"\0"


def strlen(s: BytesLike) -> int:
    return len(_cstr(s))


def strchr(s: BytesLike, c: Union[int, str, bytes]) -> Optional[int]:
    """Index of the first c in the string before its NUL, or None."""
    code = c if isinstance(c, int) else _as_bytes(c)[0]
    if code == 0:
        return None
    index = _cstr(s).find(bytes([code & 0xFF]))
    return None if index < 0 else index


def atoi(s: BytesLike) -> int:
    """Value of the leading decimal digits; no sign or whitespace is accepted."""
    digits = bytes(takewhile(lambda ch: 0x30 <= ch <= 0x39, _as_bytes(s)))
    return int(digits) if digits else 0


def gets(stream: BinaryIO, max: int) -> bytes:
    """Read up to max-1 bytes, stopping after a newline or carriage return, or at EOF."""
    out = bytearray()
    while len(out) + 1 < max:
        c = stream.read(1)
        if not c:
            break
        out += c
        if c in (b"\n", b"\r"):
            break
    return bytes(out)