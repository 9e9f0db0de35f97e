"""External command execution.

Every disk, mount and container tool is invoked through a ``CommandRunner``
so the partition, verity and boot-config logic can be exercised with a fake
runner returning canned output.
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from oem_seal.logging import LoggerFactory

from .exceptions import ToolExecutionError


log = LoggerFactory.for_command()


@dataclass(frozen=True)
class CommandResult:
    command: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner(Protocol):
    """Runs a command to completion and captures its output."""

    def run(
        self, command: Sequence[str], input_text: Optional[str] = None
    ) -> CommandResult:
        ...


class SubprocessRunner:
    """CommandRunner backed by ``subprocess.run``.

    Args:
        use_sudo: Prefix every command with ``sudo``
    """

    def __init__(self, use_sudo: bool = False):
        self.use_sudo = use_sudo

    def run(
        self, command: Sequence[str], input_text: Optional[str] = None
    ) -> CommandResult:
        argv = ["sudo", *command] if self.use_sudo else list(command)
        log.debug(f"Running command: {' '.join(argv)}")
        result = subprocess.run(
            argv,
            input=input_text,
            text=True,
            capture_output=True,
        )
        if result.stdout:
            log.trace(f"stdout: {result.stdout.strip()}")
        if result.stderr:
            log.trace(f"stderr: {result.stderr.strip()}")
        log.debug(f"Command completed with return code {result.returncode}")
        return CommandResult(
            command=tuple(argv),
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )


_default_runner: Optional[CommandRunner] = None


def get_default_runner() -> CommandRunner:
    """Runner used when callers pass none; honours the ``use_sudo`` setting."""
    global _default_runner
    if _default_runner is None:
        from oem_seal.config import settings

        _default_runner = SubprocessRunner(use_sudo=settings.get_bool("use_sudo"))
    return _default_runner


def set_default_runner(runner: Optional[CommandRunner]) -> None:
    global _default_runner
    _default_runner = runner


def run_checked_command(
    command: Sequence[str],
    input_text: Optional[str] = None,
    runner: Optional[CommandRunner] = None,
) -> str:
    """Run a command and raise ToolExecutionError if it fails.

    Returns:
        The command's stdout
    """
    runner = runner or get_default_runner()
    result = runner.run(command, input_text=input_text)
    if not result.ok:
        stderr = result.stderr.strip()
        stdout = result.stdout.strip()
        raise ToolExecutionError(result.command, result.returncode, stderr or stdout)
    return result.stdout


__all__ = [
    "CommandResult",
    "CommandRunner",
    "SubprocessRunner",
    "get_default_runner",
    "run_checked_command",
    "set_default_runner",
]
