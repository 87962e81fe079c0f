import struct

import pytest

from kernsim.locks import KernelPanic
from kernsim.mmu import DPL_USER, SEG_KCODE, SEG_UCODE, STS_IG32, STS_TG32
from kernsim.syscall import Clock, Process, SyscallNumber, SyscallTable, UserSpace
from kernsim.trap import (
    Irq,
    TrapDispatcher,
    TrapFrame,
    TrapNumber,
    TrapOutcome,
    build_idt,
)

USER_CS = (SEG_UCODE << 3) | DPL_USER
KERNEL_CS = SEG_KCODE << 3


def frame(trapno, cs=USER_CS, **kw):
    return TrapFrame(trapno=trapno, cs=cs, **kw)


def test_trap_frame_size_and_round_trip():
    tf = TrapFrame(edi=1, eax=2, gs=3, trapno=TrapNumber.PGFLT, eip=0x1000, cs=USER_CS, esp=0x2000, ss=5)
    data = tf.pack()
    assert len(data) == TrapFrame.SIZE == 76
    assert TrapFrame.unpack(data) == tf


def test_trap_frame_field_offsets():
    data = TrapFrame(eax=0x11223344, trapno=64).pack()
    assert struct.unpack_from("<I", data, 28)[0] == 0x11223344
    assert struct.unpack_from("<I", data, 48)[0] == 64


def test_trap_frame_unpack_wrong_size():
    with pytest.raises(ValueError):
        TrapFrame.unpack(bytes(10))


def test_build_idt():
    vectors = [0x80100000 + 8 * i for i in range(256)]
    idt = build_idt(vectors)
    assert len(idt) == 256
    assert [gate.offset for gate in idt] == vectors
    sys_gate = idt[TrapNumber.SYSCALL]
    assert sys_gate.type == STS_TG32 and sys_gate.dpl == DPL_USER
    others = [g for i, g in enumerate(idt) if i != TrapNumber.SYSCALL]
    assert all(g.type == STS_IG32 and g.dpl == 0 and g.cs == KERNEL_CS for g in others)


def test_build_idt_wrong_length():
    with pytest.raises(ValueError):
        build_idt([0] * 10)


def test_syscall_trap_dispatches_and_sets_eax():
    dispatcher = TrapDispatcher()
    process = Process(pid=9, user=UserSpace(bytearray(32)))
    tf = frame(TrapNumber.SYSCALL, eax=SyscallNumber.GETPID, esp=4)
    outcome = dispatcher.handle(tf, process, 0)
    assert outcome.result == 9
    assert tf.eax == 9
    assert process.user.esp == 4
    assert outcome.exit is False


def test_syscall_trap_unknown_number():
    dispatcher = TrapDispatcher()
    tf = frame(TrapNumber.SYSCALL, eax=SyscallNumber.FORK)
    outcome = dispatcher.handle(tf, Process(pid=1), 0)
    assert outcome.result == -1
    assert tf.eax == 0xFFFFFFFF


def test_syscall_trap_killed_process_exits():
    calls = []
    table = SyscallTable()
    table.register(SyscallNumber.FORK, lambda p: calls.append(p) or 0)
    dispatcher = TrapDispatcher(table)
    outcome = dispatcher.handle(frame(TrapNumber.SYSCALL, eax=SyscallNumber.FORK), Process(pid=1, killed=True), 0)
    assert outcome.exit is True
    assert outcome.result is None
    assert calls == []


def test_syscall_trap_without_process_panics():
    with pytest.raises(KernelPanic):
        TrapDispatcher().handle(frame(TrapNumber.SYSCALL), None, 0)


def test_timer_ticks_only_on_cpu0():
    clock = Clock()
    dispatcher = TrapDispatcher(clock=clock)
    tf = frame(TrapNumber.IRQ0 + Irq.TIMER)
    dispatcher.handle(tf, None, 1)
    assert clock.uptime() == 0
    outcome = dispatcher.handle(tf, None, 0)
    assert clock.uptime() == 1
    assert outcome.acknowledged is True


def test_timer_yields_running_process():
    outcome = TrapDispatcher().handle(frame(TrapNumber.IRQ0 + Irq.TIMER), Process(pid=1), 0)
    assert outcome.yield_cpu is True
    assert outcome.exit is False


def test_timer_exits_killed_user_process():
    outcome = TrapDispatcher().handle(frame(TrapNumber.IRQ0 + Irq.TIMER), Process(pid=1, killed=True), 0)
    assert outcome.exit is True
    assert outcome.yield_cpu is False


def test_device_irq_handler_runs():
    dispatcher = TrapDispatcher()
    seen = []
    dispatcher.register_irq(Irq.KBD, lambda: seen.append("kbd"))
    outcome = dispatcher.handle(frame(TrapNumber.IRQ0 + Irq.KBD), None, 0)
    assert seen == ["kbd"]
    assert outcome.acknowledged is True


def test_register_irq_rejects_timer():
    with pytest.raises(ValueError):
        TrapDispatcher().register_irq(Irq.TIMER, lambda: None)


def test_second_ide_channel_ignored():
    outcome = TrapDispatcher().handle(frame(TrapNumber.IRQ0 + Irq.IDE + 1), None, 0)
    assert outcome == TrapOutcome()


def test_spurious_interrupt_reported():
    outcome = TrapDispatcher().handle(frame(TrapNumber.IRQ0 + Irq.SPURIOUS), None, 1)
    assert outcome.acknowledged is True
    assert "spurious" in outcome.message


def test_kernel_fault_panics():
    with pytest.raises(KernelPanic):
        TrapDispatcher().handle(frame(TrapNumber.PGFLT, cs=KERNEL_CS), Process(pid=1), 0)
    with pytest.raises(KernelPanic):
        TrapDispatcher().handle(frame(TrapNumber.PGFLT), None, 0)


def test_user_fault_kills_process():
    process = Process(pid=5, name="init")
    outcome = TrapDispatcher().handle(frame(TrapNumber.GPFLT), process, 0)
    assert process.killed is True
    assert outcome.exit is True
    assert "kill proc" in outcome.message