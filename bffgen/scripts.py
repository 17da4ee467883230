"""Hook and launcher scripts written next to each project."""
from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import List
import os
import shlex

from .project_model import ProjectModel
from .toolchains import ToolchainContext, environment_setup_command

LASTBUILDSTATE_PROPERTIES = (
    "TargetFrameworkVersion",
    "PlatformToolSet",
    "EnableManagedIncrementalBuild",
    "VCToolArchitecture",
    "WindowsTargetPlatformVersion",
)


class ScriptDialect(str, Enum):
    BATCH = "batch"
    SH = "sh"

    @classmethod
    def native(cls) -> "ScriptDialect":
        return cls.BATCH if os.name == "nt" else cls.SH

    @property
    def suffix(self) -> str:
        return ".bat" if self is ScriptDialect.BATCH else ".sh"


def head_text(context: ToolchainContext, *, brokerage: str = "", dialect: ScriptDialect) -> str:
    """Script prologue: brokerage export plus toolchain environment setup."""

    if dialect is ScriptDialect.BATCH:
        lines = ["@echo off"]
        if brokerage:
            lines.append(f"set FASTBUILD_BROKERAGE_PATH={brokerage}")
        lines.append(environment_setup_command(context))
        return "\n".join(lines)

    lines = ["#!/bin/sh"]
    if brokerage:
        lines.append(f"export FASTBUILD_BROKERAGE_PATH={shlex.quote(brokerage)}")
    return "\n".join(lines)


def _script_path(project: ProjectModel, stage: str, dialect: ScriptDialect) -> Path:
    stem = project.path.name.split(".", 1)[0]
    return project.directory / f"{stem}_{stage}{dialect.suffix}"


def hook_script_path(project: ProjectModel, stage: str, dialect: ScriptDialect) -> Path:
    return _script_path(project, stage, dialect)


def hook_script(
    context: ToolchainContext,
    command: str,
    *,
    brokerage: str = "",
    dialect: ScriptDialect,
) -> str:
    return f"{head_text(context, brokerage=brokerage, dialect=dialect)}\n{command}\n"


def launcher_path(project: ProjectModel, dialect: ScriptDialect) -> Path:
    """Per-project launcher, so projects sharing a directory never share one."""

    return _script_path(project, "fb", dialect)


def _state_line(project: ProjectModel) -> str:
    return "#" + ":".join(f"{name}={project.property(name)}" for name in LASTBUILDSTATE_PROPERTIES)


def launcher_script(
    project: ProjectModel,
    context: ToolchainContext,
    *,
    executor: str,
    configuration: str,
    platform: str,
    brokerage: str = "",
    dialect: ScriptDialect,
) -> str:
    """Script that runs the executor and records ``lastbuildstate`` bookkeeping.

    The script exits with the executor's exit code.
    """

    project_name = project.property("ProjectName") or project.name
    tlog_dir = f"{project.property('IntDir')}{project_name}.tlog"
    solution_dir = project.property("SolutionDir") or f"{project.directory}{os.sep}"
    head = head_text(context, brokerage=brokerage, dialect=dialect)

    if dialect is ScriptDialect.BATCH:
        solution_dir = solution_dir.replace("/", "\\").rstrip("\\") + "\\"
        state_file = f"{tlog_dir}\\{project_name}.lastbuildstate"
        lines = [
            f'{head} && "{executor}" %*',
            "@set FB_EXIT=%ERRORLEVEL%",
            "",
            f"@if not exist {tlog_dir} mkdir {tlog_dir}",
            f"@echo {_state_line(project)}>{state_file}",
            f"@echo on>>{state_file}",
            f"@echo {configuration}^|{platform}^|{solution_dir}^|>>{state_file}",
            "@exit /b %FB_EXIT%",
        ]
        return "\n".join(lines) + "\n"

    state_file = f"{tlog_dir}/{project_name}.lastbuildstate"
    lines = [
        head,
        f"{shlex.quote(executor)} \"$@\"",
        "fb_exit=$?",
        "",
        f"mkdir -p {shlex.quote(tlog_dir)}",
        f"printf '%s\\n' {shlex.quote(_state_line(project))} > {shlex.quote(state_file)}",
        f"printf '%s\\n' on >> {shlex.quote(state_file)}",
        f"printf '%s\\n' {shlex.quote(f'{configuration}|{platform}|{solution_dir}|')} >> {shlex.quote(state_file)}",
        'exit "$fb_exit"',
    ]
    return "\n".join(lines) + "\n"


def launcher_command(launcher: Path, graph_file: Path, fbuild_args: str, dialect: ScriptDialect) -> List[str]:
    """Command line that runs ``launcher`` against ``graph_file``."""

    extra = shlex.split(fbuild_args, posix=dialect is ScriptDialect.SH) if fbuild_args else []
    if dialect is ScriptDialect.BATCH:
        return ["cmd", "/c", str(launcher), "-config", str(graph_file), *extra]
    return ["sh", str(launcher), "-config", str(graph_file), *extra]


__all__ = [
    "LASTBUILDSTATE_PROPERTIES",
    "ScriptDialect",
    "head_text",
    "hook_script",
    "hook_script_path",
    "launcher_command",
    "launcher_path",
    "launcher_script",
]
