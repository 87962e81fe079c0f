"""Remove files and empty directories."""

from __future__ import annotations

import os
import sys
from typing import Iterable, List, Optional


def remove_all(paths: Iterable[str]) -> List[str]:
    """Remove each path in turn, stopping with OSError at the first failure.

    Empty directories are removed as well as files. Returns the paths removed.
    """
    removed: List[str] = []
    for path in paths:
        if os.path.isdir(path) and not os.path.islink(path):
            os.rmdir(path)
        else:
            os.unlink(path)
        removed.append(path)
    return removed


def main(argv: Optional[List[str]] = None) -> int:
    paths = sys.argv[1:] if argv is None else list(argv)
    if not paths:
        sys.stderr.write("Usage: rm files...\n")
        return 1
    try:
        remove_all(paths)
    except OSError as err:
        sys.stderr.write(f"rm: {err.filename} failed to delete\n")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())