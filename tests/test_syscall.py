import struct
import threading
import time

import pytest

from kernsim.mmu import NOFILE
from kernsim.syscall import (
    Clock,
    FileDescriptorTable,
    Process,
    SyscallError,
    SyscallNumber,
    SyscallTable,
    UserSpace,
)

ESP = 16


def make_user(args, size=64):
    memory = bytearray(size)
    words = [0xDEAD] + list(args)
    struct.pack_into(f"<{len(words)}i", memory, ESP, *words)
    return UserSpace(memory, esp=ESP)


def test_fetch_int_reads_little_endian():
    user = UserSpace(bytearray(8))
    struct.pack_into("<i", user.memory, 4, -7)
    assert user.fetch_int(4) == -7


def test_fetch_int_out_of_bounds():
    user = UserSpace(bytearray(8))
    with pytest.raises(SyscallError):
        user.fetch_int(5)
    with pytest.raises(SyscallError):
        user.fetch_int(8)


def test_fetch_str():
    user = UserSpace(b"xxhello\0yy")
    assert user.fetch_str(2) == b"hello"


def test_fetch_str_without_nul():
    user = UserSpace(b"abc")
    with pytest.raises(SyscallError):
        user.fetch_str(0)
    with pytest.raises(SyscallError):
        user.fetch_str(3)


def test_arg_int():
    user = make_user([11, 22])
    assert user.arg_int(0) == 11
    assert user.arg_int(1) == 22


def test_arg_ptr_bounds():
    user = make_user([4, 60])
    assert user.arg_ptr(0, 8) == 4
    with pytest.raises(SyscallError):
        user.arg_ptr(1, 8)
    with pytest.raises(SyscallError):
        user.arg_ptr(0, -1)


def test_arg_str():
    user = make_user([40])
    user.memory[40:44] = b"cat\0"
    assert user.arg_str(0) == b"cat"


def test_fd_table_alloc_lowest_and_full():
    table = FileDescriptorTable()
    fds = [table.alloc(object()) for _ in range(NOFILE)]
    assert fds == list(range(NOFILE))
    with pytest.raises(SyscallError):
        table.alloc(object())


def test_fd_table_close_and_reuse():
    table = FileDescriptorTable()
    a, b = object(), object()
    table.alloc(a)
    table.alloc(b)
    assert table.close(0) is a
    with pytest.raises(SyscallError):
        table.get(0)
    assert table.alloc(b) == 0


def test_fd_table_dup_shares_file():
    table = FileDescriptorTable()
    f = object()
    fd = table.alloc(f)
    new = table.dup(fd)
    assert new != fd
    assert table.get(new) is table.get(fd)


def test_fd_table_bad_fd():
    table = FileDescriptorTable()
    with pytest.raises(SyscallError):
        table.get(-1)
    with pytest.raises(SyscallError):
        table.get(NOFILE)


def test_clock_tick_and_uptime():
    clock = Clock()
    for _ in range(3):
        clock.tick()
    assert clock.uptime() == 3


def test_clock_sleep_zero_returns():
    clock = Clock()
    clock.sleep(0, Process(pid=1))
    assert clock.uptime() == 0


def test_clock_sleep_killed_raises():
    clock = Clock()
    with pytest.raises(SyscallError):
        clock.sleep(5, Process(pid=1, killed=True))


def test_clock_sleep_waits_for_ticks():
    clock = Clock()
    done = []
    thread = threading.Thread(target=lambda: (clock.sleep(2, Process(pid=1)), done.append(True)))
    thread.start()
    deadline = time.monotonic() + 5
    while thread.is_alive() and time.monotonic() < deadline:
        clock.tick()
        time.sleep(0.01)
    thread.join(1)
    assert done == [True]
    assert clock.uptime() >= 2


def test_dispatch_getpid():
    table = SyscallTable()
    assert table.dispatch(SyscallNumber.GETPID, Process(pid=42)) == 42


def test_dispatch_unknown_numbers():
    table = SyscallTable()
    process = Process(pid=1)
    assert table.dispatch(0, process) == -1
    assert table.dispatch(SyscallNumber.FORK, process) == -1
    assert table.dispatch(99, process) == -1


def test_dispatch_handler_error_gives_minus_one():
    table = SyscallTable()

    def failing(process):
        raise SyscallError("nope")

    table.register(SyscallNumber.FORK, failing)
    assert table.dispatch(SyscallNumber.FORK, Process(pid=1)) == -1


def test_register_rejects_bad_number():
    with pytest.raises(ValueError):
        SyscallTable().register(22, lambda process: 0)


def test_dispatch_dup_and_close():
    process = Process(pid=3, user=make_user([0]))
    f = object()
    process.files.alloc(f)
    table = SyscallTable()
    new = table.dispatch(SyscallNumber.DUP, process)
    assert process.files.get(new) is f
    assert table.dispatch(SyscallNumber.CLOSE, process) == 0
    assert table.dispatch(SyscallNumber.CLOSE, process) == -1


def test_dispatch_uptime_and_sleep():
    clock = Clock()
    clock.tick()
    table = SyscallTable(clock)
    process = Process(pid=1, user=make_user([0]))
    assert table.dispatch(SyscallNumber.UPTIME, process) == clock.uptime()
    assert table.dispatch(SyscallNumber.SLEEP, process) == 0
    killed = Process(pid=2, user=make_user([3]), killed=True)
    assert table.dispatch(SyscallNumber.SLEEP, killed) == -1