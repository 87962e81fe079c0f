"""Two-level x86 page tables over a simulated physical memory."""

from __future__ import annotations

import struct
from typing import Dict, Iterator, List, Optional, Set, Tuple

from kernsim.mmu import (
    DEVSPACE,
    EXTMEM,
    KERNBASE,
    KERNLINK,
    NPDENTRIES,
    PDXSHIFT,
    PGSIZE,
    PHYSTOP,
    PTE_P,
    PTE_U,
    PTE_W,
    UINT_MASK,
    p2v,
    pdx,
    pground_down,
    pground_up,
    pte_addr,
    pte_flags,
    ptx,
    v2p,
)

_WORD = struct.Struct("<I")


class VmError(RuntimeError):
    """Raised when memory runs out or a page table is used inconsistently."""


class PhysicalMemory:
    """Physical memory with a free list of pages between start and end.

    Only pages in [start, end) are handed out by alloc_page; any physical
    address may be read or written, and unwritten memory reads as zero.
    """

    def __init__(self, start: int = 0x400000, end: int = PHYSTOP) -> None:
        if start % PGSIZE or end % PGSIZE or not 0 <= start <= end <= PHYSTOP:
            raise ValueError("start and end must be page aligned and within PHYSTOP")
        self.start = start
        self.end = end
        self._free: List[int] = list(range(start, end, PGSIZE))
        self._free_set: Set[int] = set(self._free)
        self._pages: Dict[int, bytearray] = {}

    @property
    def free_count(self) -> int:
        """Number of pages on the free list."""
        return len(self._free)

    def alloc_page(self) -> int:
        """Take a zeroed page off the free list and return its physical address."""
        if not self._free:
            raise VmError("out of memory")
        pa = self._free.pop()
        self._free_set.discard(pa)
        self._pages[pa] = bytearray(PGSIZE)
        return pa

    def free_page(self, pa: int) -> None:
        """Put an allocated page back on the free list."""
        if pa % PGSIZE or not self.start <= pa < self.end or pa in self._free_set:
            raise VmError(f"kfree: {pa:#x}")
        self._pages.pop(pa, None)
        self._free.append(pa)
        self._free_set.add(pa)

    def _chunks(self, pa: int, n: int) -> Iterator[Tuple[int, int, int]]:
        while n > 0:
            page = pa & ~(PGSIZE - 1)
            offset = pa - page
            size = min(n, PGSIZE - offset)
            yield page, offset, size
            pa += size
            n -= size

    def read(self, pa: int, n: int) -> bytes:
        """Read n bytes starting at physical address pa."""
        if n < 0:
            raise ValueError("length must not be negative")
        out = bytearray()
        for page, offset, size in self._chunks(pa, n):
            frame = self._pages.get(page)
            out += frame[offset : offset + size] if frame is not None else bytes(size)
        return bytes(out)

    def write(self, pa: int, data: bytes) -> None:
        """Write data starting at physical address pa."""
        view = memoryview(bytes(data))
        done = 0
        for page, offset, size in self._chunks(pa, len(view)):
            frame = self._pages.setdefault(page, bytearray(PGSIZE))
            frame[offset : offset + size] = view[done : done + size]
            done += size

    def _read_u32(self, pa: int) -> int:
        frame = self._pages.get(pa & ~(PGSIZE - 1))
        if frame is None:
            return 0
        return _WORD.unpack_from(frame, pa & (PGSIZE - 1))[0]

    def _write_u32(self, pa: int, value: int) -> None:
        frame = self._pages.setdefault(pa & ~(PGSIZE - 1), bytearray(PGSIZE))
        _WORD.pack_into(frame, pa & (PGSIZE - 1), value & UINT_MASK)


def _kmap(data_addr: int) -> List[Tuple[int, int, int, int]]:
    """The kernel mappings present in every page table: (virt, phys_start, phys_end, perm)."""
    return [
        (KERNBASE, 0, EXTMEM, PTE_W),  # I/O space
        (KERNLINK, v2p(KERNLINK), v2p(data_addr), 0),  # kernel text and rodata
        (data_addr, v2p(data_addr), PHYSTOP, PTE_W),  # kernel data and free memory
        (DEVSPACE, DEVSPACE, 0, PTE_W),  # more devices
    ]


class PageDirectory:
    """A page directory held in physical memory, with the kernel mapped above KERNBASE."""

    def __init__(self, memory: PhysicalMemory, pgdir: int, data_addr: int) -> None:
        self.memory = memory
        self.pgdir = pgdir
        self.data_addr = data_addr

    def walk(self, va: int, alloc: bool = False) -> Optional[int]:
        """Physical address of the PTE for va, creating its page table if alloc is set.

        Returns None when the page table is absent and alloc is false.
        """
        mem = self.memory
        pde_at = self.pgdir + 4 * pdx(va)
        pde = mem._read_u32(pde_at)
        if pde & PTE_P:
            pgtab = pte_addr(pde)
        else:
            if not alloc:
                return None
            pgtab = mem.alloc_page()
            mem._write_u32(pde_at, pgtab | PTE_P | PTE_W | PTE_U)
        return pgtab + 4 * ptx(va)

    def _pte(self, va: int) -> Optional[int]:
        entry = self.walk(va)
        return None if entry is None else self.memory._read_u32(entry)

    def map_pages(self, va: int, size: int, pa: int, perm: int) -> None:
        """Map the pages covering [va, va+size) to physical memory from pa."""
        if size <= 0:
            raise ValueError("size must be positive")
        a = pground_down(va)
        last = pground_down(va + size - 1)
        while True:
            entry = self.walk(a, True)
            assert entry is not None
            if self.memory._read_u32(entry) & PTE_P:
                raise VmError(f"remap at {a:#x}")
            self.memory._write_u32(entry, (pa | perm | PTE_P) & UINT_MASK)
            if a == last:
                break
            a += PGSIZE
            pa += PGSIZE

    def init_uvm(self, init: bytes) -> None:
        """Load init, which must be smaller than a page, at user address 0."""
        if len(init) >= PGSIZE:
            raise VmError("inituvm: more than a page")
        mem = self.memory.alloc_page()
        self.map_pages(0, PGSIZE, mem, PTE_W | PTE_U)
        self.memory.write(mem, init)

    def alloc_uvm(self, oldsz: int, newsz: int) -> int:
        """Grow user memory from oldsz to newsz with zeroed pages; return the new size."""
        if newsz >= KERNBASE:
            raise VmError(f"allocuvm: size {newsz:#x} reaches the kernel")
        if newsz < oldsz:
            return oldsz
        for a in range(pground_up(oldsz), newsz, PGSIZE):
            try:
                mem = self.memory.alloc_page()
            except VmError as err:
                self.dealloc_uvm(newsz, oldsz)
                raise VmError("allocuvm out of memory") from err
            try:
                self.map_pages(a, PGSIZE, mem, PTE_W | PTE_U)
            except VmError as err:
                self.dealloc_uvm(newsz, oldsz)
                self.memory.free_page(mem)
                raise VmError("allocuvm out of memory (2)") from err
        return newsz

    def dealloc_uvm(self, oldsz: int, newsz: int) -> int:
        """Free user pages to shrink from oldsz to newsz; return the new size."""
        if newsz >= oldsz:
            return oldsz
        a = pground_up(newsz)
        while a < oldsz:
            entry = self.walk(a)
            if entry is None:
                a = (pdx(a) + 1) << PDXSHIFT
                continue
            pte = self.memory._read_u32(entry)
            if pte & PTE_P:
                pa = pte_addr(pte)
                if pa == 0:
                    raise VmError("kfree")
                self.memory.free_page(pa)
                self.memory._write_u32(entry, 0)
            a += PGSIZE
        return newsz

    def copy_uvm(self, sz: int) -> "PageDirectory":
        """A new page directory holding a copy of the first sz bytes of user memory."""
        child = setup_kvm(self.memory, self.data_addr)
        try:
            for i in range(0, sz, PGSIZE):
                pte = self._pte(i)
                if pte is None:
                    raise VmError("copyuvm: pte should exist")
                if not pte & PTE_P:
                    raise VmError("copyuvm: page not present")
                mem = self.memory.alloc_page()
                self.memory.write(mem, self.memory.read(pte_addr(pte), PGSIZE))
                try:
                    child.map_pages(i, PGSIZE, mem, pte_flags(pte))
                except VmError:
                    self.memory.free_page(mem)
                    raise
        except VmError:
            child.free()
            raise
        return child

    def clear_pteu(self, uva: int) -> None:
        """Make the page at uva inaccessible to user code."""
        entry = self.walk(uva)
        if entry is None:
            raise VmError("clearpteu")
        self.memory._write_u32(entry, self.memory._read_u32(entry) & ~PTE_U)

    def uva2ka(self, uva: int) -> Optional[int]:
        """Kernel address of the user page at uva, or None if not user-accessible."""
        pte = self._pte(uva)
        if pte is None or not pte & PTE_P or not pte & PTE_U:
            return None
        return p2v(pte_addr(pte))

    def copyout(self, va: int, data: bytes) -> None:
        """Copy data to user address va, which must lie in user-accessible pages."""
        view = memoryview(bytes(data))
        while view:
            va0 = pground_down(va)
            ka = self.uva2ka(va0)
            if ka is None:
                raise VmError(f"copyout: {va0:#x} is not user memory")
            n = min(PGSIZE - (va - va0), len(view))
            self.memory.write(v2p(ka) + (va - va0), view[:n])
            view = view[n:]
            va = va0 + PGSIZE

    def free(self) -> None:
        """Free all user pages, every page table and the directory itself."""
        if not self.pgdir:
            raise VmError("freevm: no pgdir")
        self.dealloc_uvm(KERNBASE, 0)
        for i in range(NPDENTRIES):
            pde = self.memory._read_u32(self.pgdir + 4 * i)
            if pde & PTE_P:
                self.memory.free_page(pte_addr(pde))
        self.memory.free_page(self.pgdir)
        self.pgdir = 0


def setup_kvm(memory: PhysicalMemory, data_addr: int) -> PageDirectory:
    """A new page directory with the kernel's mappings; data_addr is where kernel data begins."""
    if data_addr % PGSIZE or not KERNLINK < data_addr < p2v(PHYSTOP):
        raise ValueError("data_addr must be page aligned, above KERNLINK and below PHYSTOP")
    if p2v(PHYSTOP) > DEVSPACE:
        raise VmError("PHYSTOP too high")
    directory = PageDirectory(memory, memory.alloc_page(), data_addr)
    try:
        for virt, phys_start, phys_end, perm in _kmap(data_addr):
            directory.map_pages(virt, (phys_end - phys_start) & UINT_MASK, phys_start, perm)
    except VmError:
        directory.free()
        raise
    return directory