"""Command-line parsing for the shell, and keyword highlighting for '!' lines."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntFlag
from typing import List, Tuple, Union

MAXARGS = 10

KEYWORDS: Tuple[str, ...] = ("int", "char", "if", "for", "while", "return", "void", "and")

WHITESPACE = " \t\r\n\v"
SYMBOLS = "<|>&;()"

HIGHLIGHT_ON = "\033[34m"
HIGHLIGHT_OFF = "\033[0m"


class ShellSyntaxError(ValueError):
    """Raised when a command line cannot be parsed."""


class OpenMode(IntFlag):
    RDONLY = 0x000
    WRONLY = 0x001
    RDWR = 0x002
    CREATE = 0x200


@dataclass
class ExecCmd:
    """Run a program with arguments."""

    argv: List[str] = field(default_factory=list)


@dataclass
class RedirCmd:
    """Run cmd with file descriptor fd reopened on file."""

    cmd: "Command"
    file: str
    mode: OpenMode
    fd: int


@dataclass
class PipeCmd:
    """Connect the output of left to the input of right."""

    left: "Command"
    right: "Command"


@dataclass
class ListCmd:
    """Run left, wait for it, then run right."""

    left: "Command"
    right: "Command"


@dataclass
class BackCmd:
    """Run cmd in the background."""

    cmd: "Command"


Command = Union[ExecCmd, RedirCmd, PipeCmd, ListCmd, BackCmd]


class _Scanner:
    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    @property
    def at_end(self) -> bool:
        return self.pos >= len(self.text)

    @property
    def rest(self) -> str:
        return self.text[self.pos :]

    def _skip_space(self) -> None:
        while not self.at_end and self.text[self.pos] in WHITESPACE:
            self.pos += 1

    def peek(self, toks: str) -> bool:
        self._skip_space()
        return not self.at_end and self.text[self.pos] in toks

    def next_token(self) -> Tuple[str, str]:
        """Return (kind, text); kind is '' at the end, 'a' for a word, '+' for '>>'."""
        self._skip_space()
        start = self.pos
        if self.at_end:
            kind = ""
        else:
            ch = self.text[self.pos]
            if ch in "|();&<":
                self.pos += 1
                kind = ch
            elif ch == ">":
                self.pos += 1
                kind = ">"
                if not self.at_end and self.text[self.pos] == ">":
                    kind = "+"
                    self.pos += 1
            else:
                kind = "a"
                while not self.at_end and self.text[self.pos] not in WHITESPACE + SYMBOLS:
                    self.pos += 1
        text = self.text[start : self.pos]
        self._skip_space()
        return kind, text


def parse_command(line: str) -> Command:
    """Parse a command line into a command tree."""
    text = line.split("\0", 1)[0]
    scanner = _Scanner(text)
    cmd = _parse_line(scanner)
    scanner.peek("")
    if not scanner.at_end:
        raise ShellSyntaxError(f"leftovers: {scanner.rest}")
    return cmd


def _parse_line(sc: _Scanner) -> Command:
    cmd = _parse_pipe(sc)
    while sc.peek("&"):
        sc.next_token()
        cmd = BackCmd(cmd)
    if sc.peek(";"):
        sc.next_token()
        cmd = ListCmd(cmd, _parse_line(sc))
    return cmd


def _parse_pipe(sc: _Scanner) -> Command:
    cmd = _parse_exec(sc)
    if sc.peek("|"):
        sc.next_token()
        cmd = PipeCmd(cmd, _parse_pipe(sc))
    return cmd


def _parse_redirs(cmd: Command, sc: _Scanner) -> Command:
    while sc.peek("<>"):
        tok, _ = sc.next_token()
        kind, file = sc.next_token()
        if kind != "a":
            raise ShellSyntaxError("missing file for redirection")
        if tok == "<":
            cmd = RedirCmd(cmd, file, OpenMode.RDONLY, 0)
        else:  # '>' and '>>' open the same way
            cmd = RedirCmd(cmd, file, OpenMode.WRONLY | OpenMode.CREATE, 1)
    return cmd


def _parse_block(sc: _Scanner) -> Command:
    if not sc.peek("("):
        raise ShellSyntaxError("parseblock")
    sc.next_token()
    cmd = _parse_line(sc)
    if not sc.peek(")"):
        raise ShellSyntaxError("syntax - missing )")
    sc.next_token()
    return _parse_redirs(cmd, sc)


def _parse_exec(sc: _Scanner) -> Command:
    if sc.peek("("):
        return _parse_block(sc)
    exec_cmd = ExecCmd()
    ret = _parse_redirs(exec_cmd, sc)
    while not sc.peek("|)&;"):
        kind, word = sc.next_token()
        if kind == "":
            break
        if kind != "a":
            raise ShellSyntaxError("syntax")
        exec_cmd.argv.append(word)
        if len(exec_cmd.argv) >= MAXARGS:
            raise ShellSyntaxError("too many args")
        ret = _parse_redirs(ret, sc)
    return ret


def is_keyword(word: str) -> bool:
    """True if any keyword occurs anywhere within word."""
    return any(keyword in word for keyword in KEYWORDS)


def highlight_word(word: str) -> str:
    """Colour the first keyword (in keyword-list order) found in word."""
    for keyword in KEYWORDS:
        index = word.find(keyword)
        if index >= 0:
            end = index + len(keyword)
            return word[:index] + HIGHLIGHT_ON + keyword + HIGHLIGHT_OFF + word[end:]
    return word


def process_line(line: str) -> str:
    """Render a '!' line with keywords highlighted and '#...#' comments removed.

    The first character is skipped. Words are emitted only when followed by
    a space, tab or newline; a trailing newline is always appended.
    """
    out: List[str] = []
    word: List[str] = []
    in_comment = False
    for ch in line[1:].split("\0", 1)[0]:
        if ch == "#":
            in_comment = not in_comment
            continue
        if in_comment:
            continue
        if ch in " \n\t":
            out.append(highlight_word("".join(word)))
            out.append(ch)
            word.clear()
        else:
            word.append(ch)
    out.append("\n")
    return "".join(out)