"""Utilities for executing external commands with optional dry-run support."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Sequence
import os
import shlex
import subprocess


OutputCallback = Callable[[int, str], None]
"""Receives ``(pid, line)`` for every line a streamed process writes."""


@dataclass
class CommandResult:
    """Represents the outcome of an executed command."""

    command: Sequence[str]
    returncode: int
    stdout: str
    stderr: str
    streamed: bool = False
    pid: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0


class CommandError(RuntimeError):
    """Raised when a command fails."""

    def __init__(self, result: CommandResult):
        message = f"Command failed with exit code {result.returncode}: {' '.join(map(shlex.quote, result.command))}"
        if result.streamed:
            message = f"{message}\nstdout/stderr already streamed above."
        else:
            message = (
                f"{message}\n"
                f"stdout: {result.stdout}\n"
                f"stderr: {result.stderr}"
            )
        super().__init__(message)
        self.result = result


class CommandLaunchError(RuntimeError):
    """Raised when a command cannot be started at all."""

    def __init__(self, command: Sequence[str], cause: OSError):
        super().__init__(f"Failed to launch {shlex.quote(str(command[0])) if command else '<empty>'}: {cause}")
        self.command = list(command)
        self.cause = cause


class CommandRunner:
    """Abstract command runner interface."""

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        on_output: OutputCallback | None = None,
    ) -> CommandResult:
        raise NotImplementedError

    def format_command(self, command: Sequence[str]) -> str:
        return " ".join(shlex.quote(part) for part in command)


class SubprocessCommandRunner(CommandRunner):
    """Command runner that executes commands via :mod:`subprocess`.

    With ``on_output`` the process is started with a merged stdout/stderr pipe
    and every decoded line is handed to the callback as it arrives; the call
    returns once the stream is exhausted and the process has terminated.
    """

    @staticmethod
    def _merge_environment(env: Mapping[str, str] | None) -> Dict[str, str] | None:
        if env is None:
            return None
        merged = os.environ.copy()
        merged.update(env)
        return merged

    def _finalize(self, result: CommandResult, *, check: bool) -> CommandResult:
        if check and result.returncode != 0:
            raise CommandError(result)
        return result

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        on_output: OutputCallback | None = None,
    ) -> CommandResult:
        merged_env = self._merge_environment(env)
        if on_output is not None:
            return self._finalize(
                self._run_streaming(command, cwd=cwd, env=merged_env, on_output=on_output),
                check=check,
            )

        try:
            process = subprocess.run(
                command,
                cwd=str(cwd) if cwd else None,
                env=merged_env,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise CommandLaunchError(command, exc) from exc
        return self._finalize(
            CommandResult(
                command=command,
                returncode=process.returncode,
                stdout=process.stdout,
                stderr=process.stderr,
            ),
            check=check,
        )

    @staticmethod
    def _run_streaming(
        command: Sequence[str],
        *,
        cwd: Path | None,
        env: Mapping[str, str] | None,
        on_output: OutputCallback,
    ) -> CommandResult:
        try:
            process = subprocess.Popen(
                list(command),
                cwd=str(cwd) if cwd else None,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            )
        except OSError as exc:
            raise CommandLaunchError(command, exc) from exc

        assert process.stdout is not None
        with process.stdout:
            for line in process.stdout:
                on_output(process.pid, line.rstrip("\r\n"))
        returncode = process.wait()
        return CommandResult(
            command=command,
            returncode=returncode,
            stdout="",
            stderr="",
            streamed=True,
            pid=process.pid,
        )


@dataclass(slots=True)
class RecordedCommand:
    command: List[str]
    cwd: str | None
    env: Dict[str, str]
    note: str | None
    streamed: bool


class RecordingCommandRunner(CommandRunner):
    """Records commands instead of executing them; every command "succeeds"."""

    def __init__(self) -> None:
        self.commands: List[RecordedCommand] = []

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        check: bool = True,
        note: str | None = None,
        on_output: OutputCallback | None = None,
    ) -> CommandResult:
        self.commands.append(
            RecordedCommand(
                command=list(command),
                cwd=str(cwd) if cwd else None,
                env=dict(env) if env else {},
                note=note,
                streamed=on_output is not None,
            )
        )
        return CommandResult(command=command, returncode=0, stdout="", stderr="")

    def iter_commands(self) -> Iterable[RecordedCommand]:
        return iter(self.commands)

    def iter_formatted(self, *, workspace: Path | None = None) -> Iterable[str]:
        """Yield ``[dry-run] <note> (cwd=<dir>) <command>`` per recorded command."""

        default_cwd = str(workspace) if workspace else None
        for record in self.commands:
            parts: List[str] = ["[dry-run]"]
            if record.note:
                parts.append(record.note)
            cwd = record.cwd or default_cwd
            if cwd:
                parts.append(f"(cwd={cwd})")
            parts.append(self.format_command(record.command))
            yield " ".join(parts)


__all__ = [
    "CommandError",
    "CommandLaunchError",
    "CommandResult",
    "CommandRunner",
    "OutputCallback",
    "RecordedCommand",
    "RecordingCommandRunner",
    "SubprocessCommandRunner",
]
