"""ELF executable file and program headers."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import ClassVar, Iterator

ELF_MAGIC = 0x464C457F  # "\x7FELF" read as a little-endian word

ELF_PROG_LOAD = 1

ELF_PROG_FLAG_EXEC = 1
ELF_PROG_FLAG_WRITE = 2
ELF_PROG_FLAG_READ = 4


class ElfError(ValueError):
    """Raised for malformed or truncated ELF data."""


_HEADER = struct.Struct("<I12sHHIIIIIHHHHHH")
_PROG = struct.Struct("<IIIIIIII")


@dataclass(frozen=True)
class ElfHeader:
    """The ELF file header."""

    magic: int = ELF_MAGIC
    ident: bytes = bytes(12)
    type: int = 0
    machine: int = 0
    version: int = 0
    entry: int = 0
    phoff: int = 0
    shoff: int = 0
    flags: int = 0
    ehsize: int = 0
    phentsize: int = 0
    phnum: int = 0
    shentsize: int = 0
    shnum: int = 0
    shstrndx: int = 0

    SIZE: ClassVar[int] = _HEADER.size

    @classmethod
    def parse(cls, data: bytes) -> "ElfHeader":
        """Parse a header from the start of data, checking the magic number."""
        if len(data) < cls.SIZE:
            raise ElfError(f"ELF header needs {cls.SIZE} bytes, got {len(data)}")
        header = cls(*_HEADER.unpack_from(bytes(data[: cls.SIZE])))
        if header.magic != ELF_MAGIC:
            raise ElfError(f"bad ELF magic {header.magic:#x}")
        return header

    def pack(self) -> bytes:
        if len(self.ident) != 12:
            raise ValueError("ident must be 12 bytes")
        return _HEADER.pack(
            self.magic, self.ident, self.type, self.machine, self.version,
            self.entry, self.phoff, self.shoff, self.flags, self.ehsize,
            self.phentsize, self.phnum, self.shentsize, self.shnum, self.shstrndx,
        )


@dataclass(frozen=True)
class ProgramHeader:
    """An ELF program section header."""

    type: int = 0
    off: int = 0
    vaddr: int = 0
    paddr: int = 0
    filesz: int = 0
    memsz: int = 0
    flags: int = 0
    align: int = 0

    SIZE: ClassVar[int] = _PROG.size

    @property
    def is_load(self) -> bool:
        return self.type == ELF_PROG_LOAD

    @classmethod
    def parse(cls, data: bytes) -> "ProgramHeader":
        if len(data) < cls.SIZE:
            raise ElfError(f"program header needs {cls.SIZE} bytes, got {len(data)}")
        return cls(*_PROG.unpack_from(bytes(data[: cls.SIZE])))

    def pack(self) -> bytes:
        return _PROG.pack(
            self.type, self.off, self.vaddr, self.paddr,
            self.filesz, self.memsz, self.flags, self.align,
        )


def iter_program_headers(data: bytes, header: ElfHeader) -> Iterator[ProgramHeader]:
    """Yield the program headers that header describes within data."""
    for i in range(header.phnum):
        start = header.phoff + i * ProgramHeader.SIZE
        chunk = data[start : start + ProgramHeader.SIZE]
        if len(chunk) < ProgramHeader.SIZE:
            raise ElfError(f"program header {i} lies beyond the end of the file")
        yield ProgramHeader.parse(chunk)