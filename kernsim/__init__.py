"""A model of a small Unix-like kernel: paging, locks, system calls, traps and user tools."""

__version__ = "0.1.0"