"""x86 memory-management definitions: paging, segments, gates and layout."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import ClassVar, Tuple

UINT_MASK = 0xFFFFFFFF

# Eflags register
FL_IF = 0x00000200

# Control register flags
CR0_PE = 0x00000001
CR0_WP = 0x00010000
CR0_PG = 0x80000000
CR4_PSE = 0x00000010

# Segment selectors
SEG_KCODE = 1
SEG_KDATA = 2
SEG_UCODE = 3
SEG_UDATA = 4
SEG_TSS = 5
NSEGS = 6

DPL_USER = 0x3

# Application segment type bits
STA_X = 0x8
STA_W = 0x2
STA_R = 0x2

# System segment type bits
STS_T32A = 0x9
STS_IG32 = 0xE
STS_TG32 = 0xF

# Paging
NPDENTRIES = 1024
NPTENTRIES = 1024
PGSIZE = 4096
PTXSHIFT = 12
PDXSHIFT = 22

# Page table / directory entry flags
PTE_P = 0x001
PTE_W = 0x002
PTE_U = 0x004
PTE_PS = 0x080

# Memory layout
EXTMEM = 0x100000
PHYSTOP = 0xE000000
DEVSPACE = 0xFE000000
KERNBASE = 0x80000000
KERNLINK = KERNBASE + EXTMEM

# System parameters
NPROC = 64
KSTACKSIZE = 4096
NCPU = 8
NOFILE = 16
NFILE = 100
NINODE = 50
NDEV = 10
ROOTDEV = 1
MAXARG = 32
MAXOPBLOCKS = 10
LOGSIZE = MAXOPBLOCKS * 3
NBUF = MAXOPBLOCKS * 3
FSSIZE = 1000

# An all-zero descriptor for the first GDT slot.
SEG_NULLASM = bytes(8)


def pdx(va: int) -> int:
    """Page directory index of a virtual address."""
    return ((va & UINT_MASK) >> PDXSHIFT) & 0x3FF


def ptx(va: int) -> int:
    """Page table index of a virtual address."""
    return ((va & UINT_MASK) >> PTXSHIFT) & 0x3FF


def pgaddr(d: int, t: int, o: int) -> int:
    """Build a virtual address from directory index, table index and offset."""
    return ((d << PDXSHIFT) | (t << PTXSHIFT) | o) & UINT_MASK


def pground_up(sz: int) -> int:
    """Round up to a page boundary, wrapping like a 32-bit unsigned value."""
    return (sz + PGSIZE - 1) & ~(PGSIZE - 1) & UINT_MASK


def pground_down(a: int) -> int:
    """Round down to a page boundary."""
    return a & ~(PGSIZE - 1) & UINT_MASK


def pte_addr(pte: int) -> int:
    """Physical address held in a page table entry."""
    return pte & ~0xFFF & UINT_MASK


def pte_flags(pte: int) -> int:
    """Flag bits of a page table entry."""
    return pte & 0xFFF


def v2p(a: int) -> int:
    """Kernel virtual address to physical address."""
    return (a - KERNBASE) & UINT_MASK


def p2v(a: int) -> int:
    """Physical address to kernel virtual address."""
    return (a + KERNBASE) & UINT_MASK


def seg_asm(type: int, base: int, lim: int) -> bytes:
    """Encode a boot-time segment descriptor with 4K granularity."""
    base &= UINT_MASK
    lim &= UINT_MASK
    return struct.pack(
        "<HHBBBB",
        (lim >> 12) & 0xFFFF,
        base & 0xFFFF,
        (base >> 16) & 0xFF,
        0x90 | type,
        0xC0 | ((lim >> 28) & 0xF),
        (base >> 24) & 0xFF,
    )


def _pack_bits(obj, layout: Tuple[Tuple[str, int], ...]) -> int:
    word = 0
    shift = 0
    for name, width in layout:
        word |= getattr(obj, name) << shift
        shift += width
    return word


def _unpack_bits(word: int, layout: Tuple[Tuple[str, int], ...]) -> dict:
    values = {}
    for name, width in layout:
        values[name] = word & ((1 << width) - 1)
        word >>= width
    return values


def _check_widths(obj, layout: Tuple[Tuple[str, int], ...]) -> None:
    for name, width in layout:
        value = getattr(obj, name)
        if not 0 <= value < (1 << width):
            raise ValueError(f"{name}={value} does not fit in {width} bits")


def _descriptor_word(data: bytes) -> int:
    if len(data) != 8:
        raise ValueError(f"descriptor must be 8 bytes, got {len(data)}")
    return struct.unpack("<Q", bytes(data))[0]


@dataclass(frozen=True)
class SegDesc:
    """A segment descriptor, laid out as the hardware expects."""

    lim_15_0: int = 0
    base_15_0: int = 0
    base_23_16: int = 0
    type: int = 0
    s: int = 0
    dpl: int = 0
    p: int = 0
    lim_19_16: int = 0
    avl: int = 0
    rsv1: int = 0
    db: int = 0
    g: int = 0
    base_31_24: int = 0

    _LAYOUT: ClassVar[Tuple[Tuple[str, int], ...]] = (
        ("lim_15_0", 16), ("base_15_0", 16), ("base_23_16", 8), ("type", 4),
        ("s", 1), ("dpl", 2), ("p", 1), ("lim_19_16", 4), ("avl", 1),
        ("rsv1", 1), ("db", 1), ("g", 1), ("base_31_24", 8),
    )

    def __post_init__(self) -> None:
        _check_widths(self, self._LAYOUT)

    @property
    def base(self) -> int:
        return self.base_15_0 | (self.base_23_16 << 16) | (self.base_31_24 << 24)

    @classmethod
    def seg(cls, type: int, base: int, lim: int, dpl: int) -> "SegDesc":
        """Normal 32-bit segment with limit in 4K units."""
        base &= UINT_MASK
        lim &= UINT_MASK
        return cls(
            lim_15_0=(lim >> 12) & 0xFFFF,
            base_15_0=base & 0xFFFF,
            base_23_16=(base >> 16) & 0xFF,
            type=type & 0xF,
            s=1,
            dpl=dpl & 0x3,
            p=1,
            lim_19_16=(lim >> 28) & 0xF,
            avl=0,
            rsv1=0,
            db=1,
            g=1,
            base_31_24=base >> 24,
        )

    @classmethod
    def seg16(cls, type: int, base: int, lim: int, dpl: int) -> "SegDesc":
        """Byte-granular segment, as used for the task state segment."""
        base &= UINT_MASK
        lim &= UINT_MASK
        return cls(
            lim_15_0=lim & 0xFFFF,
            base_15_0=base & 0xFFFF,
            base_23_16=(base >> 16) & 0xFF,
            type=type & 0xF,
            s=1,
            dpl=dpl & 0x3,
            p=1,
            lim_19_16=(lim >> 16) & 0xF,
            avl=0,
            rsv1=0,
            db=1,
            g=0,
            base_31_24=base >> 24,
        )

    def pack(self) -> bytes:
        return struct.pack("<Q", _pack_bits(self, self._LAYOUT))

    @classmethod
    def unpack(cls, data: bytes) -> "SegDesc":
        return cls(**_unpack_bits(_descriptor_word(data), cls._LAYOUT))


@dataclass(frozen=True)
class GateDesc:
    """An interrupt or trap gate descriptor."""

    off_15_0: int = 0
    cs: int = 0
    args: int = 0
    rsv1: int = 0
    type: int = 0
    s: int = 0
    dpl: int = 0
    p: int = 0
    off_31_16: int = 0

    _LAYOUT: ClassVar[Tuple[Tuple[str, int], ...]] = (
        ("off_15_0", 16), ("cs", 16), ("args", 5), ("rsv1", 3), ("type", 4),
        ("s", 1), ("dpl", 2), ("p", 1), ("off_31_16", 16),
    )

    def __post_init__(self) -> None:
        _check_widths(self, self._LAYOUT)

    @property
    def offset(self) -> int:
        return self.off_15_0 | (self.off_31_16 << 16)

    @classmethod
    def make(cls, istrap: bool, sel: int, off: int, dpl: int) -> "GateDesc":
        """Build a gate; a trap gate leaves interrupts enabled, an interrupt gate clears them."""
        off &= UINT_MASK
        return cls(
            off_15_0=off & 0xFFFF,
            cs=sel & 0xFFFF,
            args=0,
            rsv1=0,
            type=STS_TG32 if istrap else STS_IG32,
            s=0,
            dpl=dpl & 0x3,
            p=1,
            off_31_16=off >> 16,
        )

    def pack(self) -> bytes:
        return struct.pack("<Q", _pack_bits(self, self._LAYOUT))

    @classmethod
    def unpack(cls, data: bytes) -> "GateDesc":
        return cls(**_unpack_bits(_descriptor_word(data), cls._LAYOUT))