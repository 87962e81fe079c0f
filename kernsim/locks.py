"""Spin locks with nested interrupt disabling, and sleep locks held by processes."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Optional


class KernelPanic(RuntimeError):
    """Raised where the kernel would panic on a locking error."""


@dataclass(eq=False)
class Cpu:
    """The interrupt state of one processor."""

    id: int = 0
    interrupts_enabled: bool = True
    ncli: int = 0
    intena: bool = False

    def push_cli(self) -> None:
        """Disable interrupts, remembering whether they were on at the outermost level."""
        were_enabled = self.interrupts_enabled
        self.interrupts_enabled = False
        if self.ncli == 0:
            self.intena = were_enabled
        self.ncli += 1

    def pop_cli(self) -> None:
        """Undo one push_cli; interrupts come back on when the outermost one is undone."""
        if self.interrupts_enabled:
            raise KernelPanic("popcli - interruptible")
        self.ncli -= 1
        if self.ncli < 0:
            raise KernelPanic("popcli")
        if self.ncli == 0 and self.intena:
            self.interrupts_enabled = True


class SpinLock:
    """A mutual-exclusion lock that keeps interrupts off on the CPU holding it."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.cpu: Optional[Cpu] = None
        self._word = threading.Lock()

    @property
    def locked(self) -> bool:
        return self._word.locked()

    def acquire(self, cpu: Cpu) -> None:
        """Take the lock on cpu, waiting while another CPU holds it."""
        cpu.push_cli()
        if self.holding(cpu):
            raise KernelPanic(f"acquire {self.name}")
        self._word.acquire()
        self.cpu = cpu

    def release(self, cpu: Cpu) -> None:
        if not self.holding(cpu):
            raise KernelPanic(f"release {self.name}")
        self.cpu = None
        self._word.release()
        cpu.pop_cli()

    def holding(self, cpu: Cpu) -> bool:
        """True if cpu holds this lock."""
        cpu.push_cli()
        try:
            return self.locked and self.cpu is cpu
        finally:
            cpu.pop_cli()


class SleepLock:
    """A long-term lock; a process waiting for it sleeps instead of spinning."""

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.locked = False
        self.pid = 0
        self._cond = threading.Condition()

    def acquire(self, pid: int) -> None:
        with self._cond:
            while self.locked:
                self._cond.wait()
            self.locked = True
            self.pid = pid

    def release(self) -> None:
        with self._cond:
            self.locked = False
            self.pid = 0
            self._cond.notify_all()

    def holding(self, pid: int) -> bool:
        """True if the lock is held by process pid."""
        with self._cond:
            return self.locked and self.pid == pid