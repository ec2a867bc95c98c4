"""Typed command representation.

Every synthesized operation is either a :class:`Command` (one argument
vector) or a :class:`Script` (a bash body assembled from quoted commands).
Device paths and labels only ever enter a shell line through
:func:`shlex.quote`, so no caller has to escape anything by hand.
"""

from __future__ import annotations

import os
import shlex
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Union

from driveassist.storage.exceptions import UnsupportedFilesystemError

SHELL = "/bin/bash"


@dataclass(frozen=True)
class Command:
    argv: tuple[str, ...]

    @classmethod
    def of(cls, *argv: object) -> Command:
        return cls(tuple(str(arg) for arg in argv))

    @property
    def program(self) -> str:
        return self.argv[0]

    def render(self) -> str:
        return shlex.join(self.argv)

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class Script:
    """A generated bash script body."""

    lines: tuple[str, ...]
    self_delete: bool = False

    def render(self) -> str:
        body = ["#!/bin/bash", *self.lines]
        if self.self_delete:
            body.append('rm -f "$0"')
        return "\n".join(body) + "\n"

    def as_command(self) -> Command:
        """Run the body inline with ``bash -c``."""
        return Command((SHELL, "-c", self.render()))

    def __str__(self) -> str:
        return self.render()


Synthesized = Union[Command, Script]


@dataclass(frozen=True)
class Unsupported:
    """Returned instead of a command for an unknown (filesystem, operation) pair."""

    filesystem: str | None
    operation: str

    @property
    def reason(self) -> str:
        return f"{self.operation} is not supported for filesystem {self.filesystem or 'unknown'}"

    def __bool__(self) -> bool:
        return False


def require_supported(result: Synthesized | Unsupported) -> Synthesized:
    """Turn an :class:`Unsupported` result into an exception."""
    if isinstance(result, Unsupported):
        raise UnsupportedFilesystemError(result.filesystem, result.operation)
    return result


def quote(value: object) -> str:
    return shlex.quote(str(value))


@dataclass
class ScriptBuilder:
    """Assemble a :class:`Script` line by line.

    ``run`` quotes every argument. ``raw`` takes a line verbatim and is meant
    for shell control flow around values that were already quoted with
    :func:`quote`.
    """

    strict: bool = True
    lines: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.strict:
            self.lines.append("set -e")

    def run(self, *argv: object, suffix: str = "") -> ScriptBuilder:
        line = Command.of(*argv).render()
        if suffix:
            line = f"{line} {suffix}"
        self.lines.append(line)
        return self

    def any_of(self, *commands: Command) -> ScriptBuilder:
        """Run the first command and fall back to the next on failure."""
        self.lines.append(" || ".join(command.render() for command in commands))
        return self

    def echo(self, text: str) -> ScriptBuilder:
        self.lines.append(f"echo {quote(text)}")
        return self

    def raw(self, line: str) -> ScriptBuilder:
        self.lines.append(line)
        return self

    def extend(self, lines: Iterable[str]) -> ScriptBuilder:
        self.lines.extend(lines)
        return self

    def build(self, *, self_delete: bool = False) -> Script:
        return Script(tuple(self.lines), self_delete=self_delete)


def write_script(script: Script, directory: str | Path, prefix: str = "driveassist_") -> Path:
    """Write ``script`` to a fresh executable file under ``directory``."""
    fd, name = tempfile.mkstemp(prefix=prefix, suffix=".sh", dir=str(directory))
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(script.render())
    os.chmod(name, 0o755)
    return Path(name)
