"""System call numbers, argument fetching, descriptor tables and dispatch."""

from __future__ import annotations

import logging
import struct
import threading
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Dict, List, Optional, Union

from kernsim.mmu import NOFILE, UINT_MASK

log = logging.getLogger(__name__)

_INT = struct.Struct("<i")


class SyscallError(Exception):
    """Raised when a system call's arguments are invalid or the call fails."""


class SyscallNumber(IntEnum):
    FORK = 1
    EXIT = 2
    WAIT = 3
    PIPE = 4
    READ = 5
    KILL = 6
    EXEC = 7
    FSTAT = 8
    CHDIR = 9
    DUP = 10
    GETPID = 11
    SBRK = 12
    SLEEP = 13
    UPTIME = 14
    OPEN = 15
    WRITE = 16
    MKNOD = 17
    UNLINK = 18
    LINK = 19
    MKDIR = 20
    CLOSE = 21


class UserSpace:
    """A process's user memory, addressed from 0, with the stack pointer at a system call."""

    def __init__(self, memory: Union[bytes, bytearray], esp: int = 0) -> None:
        self.memory = bytearray(memory)
        self.esp = esp

    @property
    def sz(self) -> int:
        """Size of the user address space in bytes."""
        return len(self.memory)

    def fetch_int(self, addr: int) -> int:
        """The signed 32-bit integer at addr."""
        addr &= UINT_MASK
        if addr >= self.sz or addr + 4 > self.sz:
            raise SyscallError(f"address {addr:#x} is outside the process")
        return _INT.unpack_from(self.memory, addr)[0]

    def fetch_str(self, addr: int) -> bytes:
        """The NUL-terminated string at addr, without its NUL."""
        addr &= UINT_MASK
        if addr >= self.sz:
            raise SyscallError(f"address {addr:#x} is outside the process")
        end = self.memory.find(0, addr)
        if end < 0:
            raise SyscallError(f"string at {addr:#x} is not NUL-terminated")
        return bytes(self.memory[addr:end])

    def arg_int(self, n: int) -> int:
        """The nth 32-bit argument of the current system call."""
        return self.fetch_int(self.esp + 4 + 4 * n)

    def arg_ptr(self, n: int, size: int) -> int:
        """The nth argument as the address of size bytes lying within the process."""
        addr = self.arg_int(n) & UINT_MASK
        if size < 0 or addr >= self.sz or addr + size > self.sz:
            raise SyscallError(f"buffer at {addr:#x} of {size} bytes is outside the process")
        return addr

    def arg_str(self, n: int) -> bytes:
        """The nth argument as a NUL-terminated string."""
        return self.fetch_str(self.arg_int(n))


class FileDescriptorTable:
    """A process's open files, indexed by descriptor."""

    def __init__(self, size: int = NOFILE) -> None:
        self._slots: List[Optional[Any]] = [None] * size

    def alloc(self, f: Any) -> int:
        """Place f in the lowest free slot and return its descriptor."""
        for fd, slot in enumerate(self._slots):
            if slot is None:
                self._slots[fd] = f
                return fd
        raise SyscallError("no free file descriptor")

    def get(self, fd: int) -> Any:
        """The file open on fd."""
        if not 0 <= fd < len(self._slots) or self._slots[fd] is None:
            raise SyscallError(f"bad file descriptor {fd}")
        return self._slots[fd]

    def dup(self, fd: int) -> int:
        """A new descriptor for the file open on fd."""
        return self.alloc(self.get(fd))

    def close(self, fd: int) -> Any:
        """Free fd and return the file that was open on it."""
        f = self.get(fd)
        self._slots[fd] = None
        return f


@dataclass(eq=False)
class Process:
    """The parts of a process that system calls and traps look at."""

    pid: int
    name: str = ""
    user: UserSpace = field(default_factory=lambda: UserSpace(b""))
    files: FileDescriptorTable = field(default_factory=FileDescriptorTable)
    killed: bool = False
    running: bool = True


class Clock:
    """The tick counter driven by timer interrupts."""

    def __init__(self) -> None:
        self._ticks = 0
        self._cond = threading.Condition()

    def tick(self) -> None:
        """Count one timer interrupt and wake sleepers."""
        with self._cond:
            self._ticks = (self._ticks + 1) & UINT_MASK
            self._cond.notify_all()

    def uptime(self) -> int:
        """Ticks since start."""
        with self._cond:
            return self._ticks

    def sleep(self, n: int, process: Process) -> None:
        """Wait for n ticks; raise SyscallError if process is killed meanwhile."""
        with self._cond:
            start = self._ticks
            while ((self._ticks - start) & UINT_MASK) < (n & UINT_MASK):
                if process.killed:
                    raise SyscallError("sleep interrupted: process killed")
                self._cond.wait()


Handler = Callable[[Process], int]


def _sys_getpid(process: Process) -> int:
    return process.pid


def _sys_dup(process: Process) -> int:
    return process.files.dup(process.user.arg_int(0))


def _sys_close(process: Process) -> int:
    process.files.close(process.user.arg_int(0))
    return 0


class SyscallTable:
    """Maps system call numbers to handlers and runs them."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._handlers: Dict[SyscallNumber, Handler] = {}
        self.register(SyscallNumber.GETPID, _sys_getpid)
        self.register(SyscallNumber.DUP, _sys_dup)
        self.register(SyscallNumber.CLOSE, _sys_close)
        if clock is not None:
            self.register(SyscallNumber.UPTIME, lambda process: clock.uptime())

            def sys_sleep(process: Process) -> int:
                clock.sleep(process.user.arg_int(0), process)
                return 0

            self.register(SyscallNumber.SLEEP, sys_sleep)

    def register(self, num: int, handler: Handler) -> None:
        """Install handler for system call num."""
        try:
            number = SyscallNumber(num)
        except ValueError:
            raise ValueError(f"unknown system call number {num}") from None
        self._handlers[number] = handler

    def dispatch(self, num: int, process: Process) -> int:
        """Run system call num for process; failures and unknown calls give -1."""
        handler = self._handlers.get(num)
        if handler is None:
            log.warning("%d %s: unknown sys call %d", process.pid, process.name, num)
            return -1
        try:
            return handler(process)
        except SyscallError:
            return -1