"""Bounded-concurrency execution of generated build graphs."""
from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Sequence

from core.command_runner import CommandLaunchError, CommandRunner

from .console import Console


class ProjectState(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def finished(self) -> bool:
        return self in (ProjectState.SUCCEEDED, ProjectState.FAILED, ProjectState.SKIPPED)


class ExecutionMode(str, Enum):
    AUTO = "auto"
    STRICT = "strict"
    PARALLEL = "parallel"

    def resolve(self, max_process: int) -> "ExecutionMode":
        if self is ExecutionMode.AUTO:
            return ExecutionMode.STRICT if max_process <= 1 else ExecutionMode.PARALLEL
        return self


@dataclass(slots=True)
class BuildJob:
    """One project's executor invocation."""

    name: str
    project_path: Path
    command: List[str]
    cwd: Path
    has_compile_actions: bool = True
    dependencies: List[Path] = field(default_factory=list)


@dataclass(slots=True)
class ExecutionReport:
    evaluated: int
    states: Dict[Path, ProjectState] = field(default_factory=dict)
    names: Dict[Path, str] = field(default_factory=dict)
    reasons: Dict[Path, str] = field(default_factory=dict)

    def record(self, path: Path, name: str, state: ProjectState, reason: str | None = None) -> None:
        self.states[path] = state
        self.names[path] = name
        if reason:
            self.reasons[path] = reason

    @property
    def built(self) -> int:
        return sum(1 for state in self.states.values() if state is ProjectState.SUCCEEDED)

    @property
    def unbuilt(self) -> List[Path]:
        return [path for path, state in self.states.items() if state is not ProjectState.SUCCEEDED]

    @property
    def succeeded(self) -> bool:
        return not self.unbuilt

    def summary_lines(self) -> List[str]:
        lines = [f"{self.built}/{self.evaluated} built."]
        unbuilt = self.unbuilt
        if unbuilt:
            lines.append("Unbuilt projects:")
            lines.extend(f"\t{path}" for path in unbuilt)
        return lines


class Scheduler:
    """Runs build jobs in strict order or across a bounded worker pool.

    Jobs must be given dependencies-first. A job whose executor exits non-zero
    or cannot be launched is re-run up to ``retries`` times before it counts
    as failed. In ``strict`` mode the first failure leaves every later job
    ``skipped``. In ``parallel`` mode a job is dispatched once the jobs it
    depends on have succeeded, a failure only affects that job, and
    dependents of a failed job are refused.
    """

    def __init__(
        self,
        runner: CommandRunner,
        console: Console,
        *,
        max_process: int = 1,
        mode: ExecutionMode = ExecutionMode.AUTO,
        retries: int = 0,
    ) -> None:
        if max_process < 1:
            raise ValueError("max_process must be at least 1")
        if retries < 0:
            raise ValueError("retries cannot be negative")
        self.runner = runner
        self.console = console
        self.max_process = max_process
        self.mode = ExecutionMode(mode).resolve(max_process)
        self.retries = retries

    def run(self, jobs: Sequence[BuildJob], *, evaluated: int | None = None) -> ExecutionReport:
        report = ExecutionReport(evaluated=len(jobs) if evaluated is None else evaluated)
        for job in jobs:
            report.record(job.project_path, job.name, ProjectState.PENDING)
        if self.mode is ExecutionMode.STRICT:
            self._run_strict(jobs, report)
        else:
            self._run_parallel(jobs, report)
        return report

    def _complete_without_execution(self, job: BuildJob, report: ExecutionReport) -> None:
        self.console.info(f"{job.name} has no actions to compile.")
        report.record(job.project_path, job.name, ProjectState.SUCCEEDED)

    def _attempt(self, job: BuildJob, *, tag_pid: bool) -> str | None:
        """Run ``job`` once; return the failure reason, or ``None`` on success."""

        def on_output(pid: int, line: str) -> None:
            self.console.stream(f"[{pid}] {line}" if tag_pid else line)

        try:
            result = self.runner.run(job.command, cwd=job.cwd, check=False, note=job.name, on_output=on_output)
        except CommandLaunchError as exc:
            self.console.error(f"Failed to launch FASTBuild: {exc}")
            return str(exc)
        if result.succeeded:
            return None
        return f"executor exited with code {result.returncode}"

    def _should_retry(self, job: BuildJob, attempts: Dict[Path, int]) -> bool:
        attempts[job.project_path] = attempts.get(job.project_path, 0) + 1
        if attempts[job.project_path] > self.retries:
            return False
        self.console.info(f"Retrying {job.name} ({attempts[job.project_path]}/{self.retries})")
        return True

    def _run_strict(self, jobs: Sequence[BuildJob], report: ExecutionReport) -> None:
        attempts: Dict[Path, int] = {}
        for position, job in enumerate(jobs):
            if not job.has_compile_actions:
                self._complete_without_execution(job, report)
                continue
            report.record(job.project_path, job.name, ProjectState.RUNNING)
            self.console.info(f"Building {job.name}")
            failure = self._attempt(job, tag_pid=False)
            while failure is not None and self._should_retry(job, attempts):
                failure = self._attempt(job, tag_pid=False)
            if failure is not None:
                report.record(job.project_path, job.name, ProjectState.FAILED, failure)
                self._skip_remaining(jobs[position + 1:], report, f"not started after {job.name} failed")
                return
            report.record(job.project_path, job.name, ProjectState.SUCCEEDED)

    def _skip_remaining(self, jobs: Sequence[BuildJob], report: ExecutionReport, reason: str) -> None:
        for job in jobs:
            if not report.states[job.project_path].finished:
                report.record(job.project_path, job.name, ProjectState.SKIPPED, reason)

    def _run_parallel(self, jobs: Sequence[BuildJob], report: ExecutionReport) -> None:
        scheduled = {job.project_path for job in jobs}
        pending: List[BuildJob] = list(jobs)
        queued: List[BuildJob] = []
        running: Dict[Future[str | None], BuildJob] = {}
        attempts: Dict[Path, int] = {}

        with ThreadPoolExecutor(max_workers=self.max_process) as executor:
            while pending or queued or running:
                for job in list(pending):
                    states = [report.states[dep] for dep in job.dependencies if dep in scheduled]
                    blocker = next(
                        (
                            dep
                            for dep in job.dependencies
                            if dep in scheduled
                            and report.states[dep] in (ProjectState.FAILED, ProjectState.SKIPPED)
                        ),
                        None,
                    )
                    if blocker is not None:
                        pending.remove(job)
                        reason = f"dependency {report.names[blocker]} did not build"
                        self.console.error(f"Refusing to build {job.name}: {reason}")
                        report.record(job.project_path, job.name, ProjectState.SKIPPED, reason)
                    elif all(state is ProjectState.SUCCEEDED for state in states):
                        pending.remove(job)
                        if not job.has_compile_actions:
                            self._complete_without_execution(job, report)
                            continue
                        queued.append(job)
                        report.record(job.project_path, job.name, ProjectState.QUEUED)

                while queued and len(running) < self.max_process:
                    job = queued.pop(0)
                    self.console.info(f"Create process of {job.project_path}")
                    report.record(job.project_path, job.name, ProjectState.RUNNING)
                    running[executor.submit(self._attempt, job, tag_pid=True)] = job

                if not running:
                    # Remaining jobs wait on dependencies that were never scheduled to finish.
                    self._skip_remaining(pending, report, "dependencies did not complete")
                    return

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    job = running.pop(future)
                    failure = future.result()
                    if failure is None:
                        report.record(job.project_path, job.name, ProjectState.SUCCEEDED)
                    elif self._should_retry(job, attempts):
                        queued.append(job)
                        report.record(job.project_path, job.name, ProjectState.QUEUED)
                    else:
                        report.record(job.project_path, job.name, ProjectState.FAILED, failure)


__all__ = [
    "BuildJob",
    "ExecutionMode",
    "ExecutionReport",
    "ProjectState",
    "Scheduler",
]
