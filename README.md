# kernsim

`kernsim` models pieces of a small Unix-like kernel for 32-bit x86 as plain
Python objects that can be inspected and tested. It reproduces the data
layouts, checks and decisions the kernel makes; it does not run programs.

## Modules

- **`kernsim.mmu`**: page-directory and page-table indexes (`pdx`, `ptx`,
  `pgaddr`), page rounding (`pground_up`, `pground_down`), page table entry
  fields (`pte_addr`, `pte_flags`), kernel/physical address conversion
  (`v2p`, `p2v`), the boot-time descriptor encoder `seg_asm`, and packed
  segment and gate descriptors (`SegDesc.seg`, `SegDesc.seg16`,
  `GateDesc.make`, each with `pack`/`unpack`). Also the layout and system
  parameters such as `KERNBASE`, `PHYSTOP`, `PGSIZE` and `NOFILE`.
- **`kernsim.elf`**: `ElfHeader` and `ProgramHeader` with `parse` and `pack`,
  and `iter_program_headers`. Truncated data or a bad magic number raises
  `ElfError`.
- **`kernsim.records`**: the packed `Stat` record with its `FileType`, and
  `RtcDate`, convertible to and from `datetime.datetime`.
- **`kernsim.cstring`**: C string and memory routines on Python bytes
  (`memcmp`, `memmove`, `strcmp`, `strncmp`, `strncpy`, `safestrcpy`,
  `strlen`, `strchr`, `atoi`, `gets`). Strings end at their first NUL byte.
- **`kernsim.shell`**: `parse_command` builds a tree of `ExecCmd`,
  `RedirCmd`, `PipeCmd`, `ListCmd` and `BackCmd`; redirections carry an
  `OpenMode`. `is_keyword`, `highlight_word` and `process_line` render lines
  starting with `!` with keywords coloured blue and `#...#` comments removed.
- **`kernsim.wc`**: `count` returns a `WordCount` of lines, words and bytes
  read from a binary stream.
- **`kernsim.rm`**: `remove_all` removes files and empty directories in turn,
  raising `OSError` at the first failure.
- **`kernsim.umalloc`**: `Arena`, a first-fit, address-ordered free-list
  allocator over a simulated heap (`malloc`, `free`, `free_blocks`); running
  out of room raises `OutOfMemory`.
- **`kernsim.vm`**: `PhysicalMemory` (a page free list plus byte storage),
  `setup_kvm` to create a `PageDirectory` with the kernel mappings, and page
  table operations: `walk`, `map_pages`, `init_uvm`, `alloc_uvm`,
  `dealloc_uvm`, `copy_uvm`, `clear_pteu`, `uva2ka`, `copyout`, `free`.
  Failures raise `VmError`.
- **`kernsim.locks`**: `Cpu` with nested `push_cli`/`pop_cli`, `SpinLock`
  and `SleepLock`. Misuse, such as acquiring a held lock twice on one CPU,
  raises `KernelPanic`.
- **`kernsim.syscall`**: `SyscallNumber`, `UserSpace` for fetching call
  arguments from user memory, `FileDescriptorTable`, `Process`, the tick
  `Clock`, and `SyscallTable`. A failing call or an unknown number
  dispatches to `-1`.
- **`kernsim.trap`**: `TrapNumber`, `Irq`, the packed `TrapFrame`,
  `build_idt` for the 256 gates, and `TrapDispatcher.handle`, which returns a
  `TrapOutcome` saying whether the interrupt was acknowledged and whether the
  process must exit or yield.

## Installation

```
pip install .
```

Python 3.10 or later; nothing outside the standard library is needed.

## Examples

```python
from kernsim.mmu import pdx, ptx, pground_up, pground_down

pdx(0x80000000)      # 512
ptx(0x00403000)      # 3
pground_up(5000)     # 8192
pground_down(5000)   # 4096
```

```python
from kernsim.cstring import atoi, strlen

atoi("42abc")            # 42
strlen(b"hello\0world")  # 5
```

```python
from kernsim.shell import parse_command, PipeCmd

cmd = parse_command("cat README | grep kernel > out")
isinstance(cmd, PipeCmd)  # True
```

An unclosed parenthesis or a redirection with no file raises
`ShellSyntaxError`.

## Command-line tools

Count lines, words and bytes of each file, or of standard input when no file
is named:

```
kernsim-wc README.md
```

Remove files or empty directories, stopping at the first that cannot be
removed:

```
kernsim-rm old.txt older.txt
```

## What it does not do

- There is no file system, process table or scheduler. `SyscallTable` comes
  with handlers only for `GETPID`, `DUP` and `CLOSE`, plus `UPTIME` and
  `SLEEP` when given a `Clock`; other calls must be registered with
  `register`.
- The shell parses command lines but does not run them.
- Trap handling reports what should happen next; it does not switch
  processes or talk to devices beyond calling handlers given to
  `register_irq`.

## Running the tests

```
pip install ".[test]"
pytest
```