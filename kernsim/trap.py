"""Trap and interrupt numbers, trap frames, the IDT and trap dispatch."""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, ClassVar, Dict, List, Optional, Sequence

from kernsim.locks import KernelPanic
from kernsim.mmu import DPL_USER, SEG_KCODE, UINT_MASK, GateDesc
from kernsim.syscall import Clock, Process, SyscallTable

log = logging.getLogger(__name__)


class TrapNumber(IntEnum):
    DIVIDE = 0
    DEBUG = 1
    NMI = 2
    BRKPT = 3
    OFLOW = 4
    BOUND = 5
    ILLOP = 6
    DEVICE = 7
    DBLFLT = 8
    TSS = 10
    SEGNP = 11
    STACK = 12
    GPFLT = 13
    PGFLT = 14
    FPERR = 16
    ALIGN = 17
    MCHK = 18
    SIMDERR = 19
    IRQ0 = 32
    SYSCALL = 64
    DEFAULT = 500


class Irq(IntEnum):
    TIMER = 0
    KBD = 1
    COM1 = 4
    IDE = 14
    ERROR = 19
    SPURIOUS = 31


_FRAME = struct.Struct("<8IHxxHxxHxxHxxIIIHxxIIHxx")


@dataclass
class TrapFrame:
    """Registers saved on the kernel stack when a trap arrives."""

    edi: int = 0
    esi: int = 0
    ebp: int = 0
    oesp: int = 0
    ebx: int = 0
    edx: int = 0
    ecx: int = 0
    eax: int = 0
    gs: int = 0
    fs: int = 0
    es: int = 0
    ds: int = 0
    trapno: int = 0
    err: int = 0
    eip: int = 0
    cs: int = 0
    eflags: int = 0
    esp: int = 0
    ss: int = 0

    SIZE: ClassVar[int] = _FRAME.size

    def pack(self) -> bytes:
        return _FRAME.pack(
            self.edi, self.esi, self.ebp, self.oesp, self.ebx, self.edx, self.ecx,
            self.eax, self.gs, self.fs, self.es, self.ds, self.trapno, self.err,
            self.eip, self.cs, self.eflags, self.esp, self.ss,
        )

    @classmethod
    def unpack(cls, data: bytes) -> "TrapFrame":
        if len(data) != cls.SIZE:
            raise ValueError(f"trap frame must be {cls.SIZE} bytes, got {len(data)}")
        return cls(*_FRAME.unpack(bytes(data)))


@dataclass
class TrapOutcome:
    """What handling a trap did and what the caller must do next."""

    result: Optional[int] = None
    acknowledged: bool = False
    exit: bool = False
    yield_cpu: bool = False
    message: Optional[str] = None


def build_idt(vectors: Sequence[int]) -> List[GateDesc]:
    """The 256 interrupt gates; only the system call gate is a trap gate open to user code."""
    if len(vectors) != 256:
        raise ValueError(f"need 256 vectors, got {len(vectors)}")
    idt = [GateDesc.make(False, SEG_KCODE << 3, vector, 0) for vector in vectors]
    idt[TrapNumber.SYSCALL] = GateDesc.make(
        True, SEG_KCODE << 3, vectors[TrapNumber.SYSCALL], DPL_USER
    )
    return idt


_DEVICE_IRQS = (Irq.IDE, Irq.KBD, Irq.COM1)


class TrapDispatcher:
    """Routes system calls, interrupts and faults."""

    def __init__(self, syscalls: Optional[SyscallTable] = None, clock: Optional[Clock] = None) -> None:
        self.clock = clock if clock is not None else Clock()
        self.syscalls = syscalls if syscalls is not None else SyscallTable(self.clock)
        self._irq_handlers: Dict[Irq, Callable[[], None]] = {}

    def register_irq(self, irq: int, handler: Callable[[], None]) -> None:
        """Install the interrupt handler for a disk, keyboard or serial IRQ."""
        if irq not in _DEVICE_IRQS:
            raise ValueError(f"IRQ {irq} has no device handler")
        self._irq_handlers[Irq(irq)] = handler

    def handle(self, tf: TrapFrame, process: Optional[Process], cpu_id: int) -> TrapOutcome:
        """Handle one trap taken on cpu_id while process (or None) was current."""
        outcome = TrapOutcome()
        if tf.trapno == TrapNumber.SYSCALL:
            if process is None:
                raise KernelPanic("trap: system call with no process")
            if process.killed:
                outcome.exit = True
                return outcome
            process.user.esp = tf.esp
            result = self.syscalls.dispatch(tf.eax, process)
            tf.eax = result & UINT_MASK
            outcome.result = result
            outcome.exit = process.killed
            return outcome

        irq = tf.trapno - TrapNumber.IRQ0
        if irq == Irq.TIMER:
            if cpu_id == 0:
                self.clock.tick()
            outcome.acknowledged = True
        elif irq in _DEVICE_IRQS:
            handler = self._irq_handlers.get(Irq(irq))
            if handler is not None:
                handler()
            outcome.acknowledged = True
        elif irq == Irq.IDE + 1:
            pass  # spurious interrupts from the second disk channel
        elif irq in (7, Irq.SPURIOUS):
            outcome.message = f"cpu{cpu_id}: spurious interrupt at {tf.cs:x}:{tf.eip:x}"
            log.warning("%s", outcome.message)
            outcome.acknowledged = True
        else:
            if process is None or tf.cs & 3 == 0:
                raise KernelPanic(
                    f"unexpected trap {tf.trapno} from cpu {cpu_id} eip {tf.eip:x}"
                )
            outcome.message = (
                f"pid {process.pid} {process.name}: trap {tf.trapno} err {tf.err} "
                f"on cpu {cpu_id} eip 0x{tf.eip:x}--kill proc"
            )
            log.warning("%s", outcome.message)
            process.killed = True

        in_user = tf.cs & 3 == DPL_USER
        if process is not None and process.killed and in_user:
            outcome.exit = True
        elif process is not None and process.running and irq == Irq.TIMER:
            outcome.yield_cpu = True
        return outcome