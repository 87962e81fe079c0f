"""A first-fit free-list allocator over a simulated, growable heap."""

from __future__ import annotations

from typing import Dict, List, Optional, Set, Tuple

HEADER_SIZE = 8
MIN_GROW_UNITS = 4096

_BASE = 0  # unit index of the zero-size sentinel that anchors the free list


class OutOfMemory(MemoryError):
    """Raised when the heap cannot grow enough to satisfy a request."""


class Arena:
    """A heap of header-sized units with a circular, address-ordered free list.

    Pointers are byte addresses; every block is preceded by a header of
    HEADER_SIZE bytes. The heap begins just above the sentinel and grows
    up to capacity bytes, at least MIN_GROW_UNITS units at a time.
    """

    def __init__(self, capacity: int = 1 << 24) -> None:
        if capacity < 0:
            raise ValueError("capacity must not be negative")
        self._capacity_units = capacity // HEADER_SIZE
        self._brk = 1
        self._size: Dict[int, int] = {}
        self._next: Dict[int, int] = {}
        self._allocated: Set[int] = set()
        self._freep: Optional[int] = None

    def malloc(self, nbytes: int) -> int:
        """Allocate nbytes and return the address of the usable memory."""
        if nbytes < 0:
            raise ValueError("size must not be negative")
        nunits = (nbytes + HEADER_SIZE - 1) // HEADER_SIZE + 1
        if self._freep is None:
            self._next[_BASE] = _BASE
            self._size[_BASE] = 0
            self._freep = _BASE
        prevp = self._freep
        p = self._next[prevp]
        while True:
            if self._size[p] >= nunits:
                if self._size[p] == nunits:
                    self._next[prevp] = self._next.pop(p)
                else:
                    self._size[p] -= nunits
                    p += self._size[p]
                    self._size[p] = nunits
                self._freep = prevp
                self._allocated.add(p)
                return (p + 1) * HEADER_SIZE
            if p == self._freep:
                p = self._morecore(nunits)
            prevp = p
            p = self._next[p]

    def _morecore(self, nunits: int) -> int:
        nunits = max(nunits, MIN_GROW_UNITS)
        if self._brk + nunits > self._capacity_units:
            raise OutOfMemory(f"cannot grow heap by {nunits * HEADER_SIZE} bytes")
        hp = self._brk
        self._brk += nunits
        self._size[hp] = nunits
        self._allocated.add(hp)
        self.free((hp + 1) * HEADER_SIZE)
        assert self._freep is not None
        return self._freep

    def free(self, ptr: int) -> None:
        """Return a block to the free list, merging it with free neighbours."""
        if ptr % HEADER_SIZE or ptr // HEADER_SIZE - 1 not in self._allocated:
            raise ValueError(f"{ptr:#x} is not an allocated block")
        bp = ptr // HEADER_SIZE - 1
        self._allocated.discard(bp)
        assert self._freep is not None
        size, nxt = self._size, self._next

        p = self._freep
        while not (p < bp < nxt[p]):
            if p >= nxt[p] and (bp > p or bp < nxt[p]):
                break
            p = nxt[p]

        after = nxt[p]
        if bp + size[bp] == after:
            size[bp] += size.pop(after)
            nxt[bp] = nxt.pop(after)
        else:
            nxt[bp] = after
        if p + size[p] == bp:
            size[p] += size.pop(bp)
            nxt[p] = nxt.pop(bp)
        else:
            nxt[p] = bp
        self._freep = p

    def free_blocks(self) -> List[Tuple[int, int]]:
        """Free blocks as (header address, size in units), in address order."""
        if self._freep is None:
            return []
        blocks = []
        p = self._next[_BASE]
        while p != _BASE:
            blocks.append((p * HEADER_SIZE, self._size[p]))
            p = self._next[p]
        return blocks