import pytest

from kernsim import mmu
from kernsim.mmu import GateDesc, SegDesc

ADDRESSES = [0, 0x1234, mmu.KERNBASE, mmu.DEVSPACE + 0x5ABC, 0xFFFFFFFF]


@pytest.mark.parametrize("va", ADDRESSES)
def test_pgaddr_reassembles_address(va):
    assert mmu.pgaddr(mmu.pdx(va), mmu.ptx(va), va & 0xFFF) == va


@pytest.mark.parametrize("va", ADDRESSES)
def test_indexes_within_tables(va):
    assert 0 <= mmu.pdx(va) < mmu.NPDENTRIES
    assert 0 <= mmu.ptx(va) < mmu.NPTENTRIES


@pytest.mark.parametrize("sz", [0, 1, mmu.PGSIZE - 1, mmu.PGSIZE, mmu.PGSIZE + 1, 123456])
def test_pground_up_invariants(sz):
    r = mmu.pground_up(sz)
    assert r % mmu.PGSIZE == 0
    assert sz <= r < sz + mmu.PGSIZE


@pytest.mark.parametrize("a", [0, 1, mmu.PGSIZE - 1, mmu.PGSIZE, mmu.PGSIZE + 1, 123456])
def test_pground_down_invariants(a):
    r = mmu.pground_down(a)
    assert r % mmu.PGSIZE == 0
    assert r <= a < r + mmu.PGSIZE


def test_pground_up_exact_page():
    assert mmu.pground_up(mmu.PGSIZE) == mmu.PGSIZE


def test_pground_up_wraps_at_32_bits():
    assert mmu.pground_up(0xFFFFFFFF) == 0


def test_v2p_p2v_kernbase():
    assert mmu.v2p(mmu.KERNBASE) == 0
    assert mmu.p2v(0) == mmu.KERNBASE


@pytest.mark.parametrize("pa", [0, mmu.EXTMEM, mmu.PHYSTOP - 1, 0x7FFFFFFF])
def test_v2p_p2v_round_trip(pa):
    assert mmu.v2p(mmu.p2v(pa)) == pa


@pytest.mark.parametrize("pte", [0, 0x1007, 0xDEADBEEF, 0xFFFFFFFF])
def test_pte_addr_and_flags_partition(pte):
    assert mmu.pte_addr(pte) | mmu.pte_flags(pte) == pte
    assert mmu.pte_addr(pte) & 0xFFF == 0
    assert mmu.pte_flags(pte) < 0x1000


def test_pte_flags_of_present_writable():
    pte = 0x1000 | mmu.PTE_P | mmu.PTE_W
    assert mmu.pte_flags(pte) == mmu.PTE_P | mmu.PTE_W
    assert mmu.pte_addr(pte) == 0x1000


@pytest.mark.parametrize(
    "type_, base, lim",
    [(mmu.STA_X | mmu.STA_R, 0, 0xFFFFFFFF), (mmu.STA_W, 0x12345678, 0x00ABCFFF)],
)
def test_seg_asm_matches_seg_descriptor(type_, base, lim):
    assert mmu.seg_asm(type_, base, lim) == SegDesc.seg(type_, base, lim, 0).pack()


def test_seg_asm_access_bytes():
    raw = mmu.seg_asm(mmu.STA_X | mmu.STA_R, 0, 0xFFFFFFFF)
    assert raw[5] == 0x90 | mmu.STA_X | mmu.STA_R
    assert raw[6] == 0xC0 | 0xF


def test_seg_null_descriptor_is_zero():
    assert SegDesc().pack() == mmu.SEG_NULLASM


def test_seg_round_trip():
    d = SegDesc.seg(mmu.STA_W, 0x12345678, 0xFFFFFFFF, mmu.DPL_USER)
    assert SegDesc.unpack(d.pack()) == d
    assert d.base == 0x12345678
    assert d.dpl == mmu.DPL_USER
    assert d.g == 1


def test_seg16_fields_and_round_trip():
    d = SegDesc.seg16(mmu.STS_T32A, 0x80112233, 103, 0)
    assert d.lim_15_0 == 103
    assert d.g == 0
    assert d.db == 1
    assert d.base == 0x80112233
    assert SegDesc.unpack(d.pack()) == d


def test_descriptor_unpack_rejects_wrong_length():
    with pytest.raises(ValueError):
        SegDesc.unpack(b"\x00" * 7)
    with pytest.raises(ValueError):
        GateDesc.unpack(b"\x00" * 9)


def test_field_too_wide_rejected():
    with pytest.raises(ValueError):
        SegDesc(type=0x10)


def test_trap_gate():
    g = GateDesc.make(True, mmu.SEG_KCODE << 3, 0x80105A2C, mmu.DPL_USER)
    assert g.type == mmu.STS_TG32
    assert g.offset == 0x80105A2C
    assert g.cs == mmu.SEG_KCODE << 3
    assert g.dpl == mmu.DPL_USER
    assert (g.p, g.s, g.args) == (1, 0, 0)


def test_interrupt_gate_round_trip():
    g = GateDesc.make(False, mmu.SEG_KCODE << 3, 0x80106000, 0)
    assert g.type == mmu.STS_IG32
    packed = g.pack()
    assert len(packed) == 8
    assert GateDesc.unpack(packed) == g