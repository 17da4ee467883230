"""Command line interface for bffgen."""
from __future__ import annotations

from argparse import ArgumentParser, Namespace
from pathlib import Path
from typing import Iterable
import sys

from core.command_runner import RecordingCommandRunner, SubprocessCommandRunner

from .config_loader import GlobalSettings, load_settings
from .console import Console
from .errors import BffgenError
from .generator import GenerationContext, Generator
from .scheduler import ExecutionMode


def _parse_arguments(argv: Iterable[str]) -> Namespace:
    parser = ArgumentParser(
        prog="bffgen",
        description="Generate FASTBuild graphs from evaluated native projects and run them",
    )
    parser.add_argument("-p", "--vcproject", dest="project", help="Project file, or project name within --sln")
    parser.add_argument("-s", "--sln", dest="solution", help="Solution document listing the projects to build")
    parser.add_argument("-c", "--config", dest="configuration", help="Configuration to build (default: Debug)")
    parser.add_argument("-f", "--platform", help="Platform to build (default: Win32)")
    parser.add_argument("-a", "--fbargs", dest="fbuild_args", help="Arguments passed to FASTBuild (default: -dist)")
    parser.add_argument("-b", "--brokerage", help="FASTBuild brokerage path for distributed builds")
    parser.add_argument("-g", "--generateonly", dest="generate_only", action="store_true", help="Only generate graph files")
    parser.add_argument("-r", "--regen", dest="regenerate", action="store_true", help="Regenerate graph files even when up to date")
    parser.add_argument("-e", "--fbexepath", dest="fbuild_path", help="Path to the FASTBuild executable (default: FBuild.exe)")
    parser.add_argument("-u", "--unity", action="store_true", default=None, help="Merge compile groups into unity files")
    parser.add_argument("-m", "--maxprocess", dest="max_process", type=int, help="Maximum concurrent FASTBuild processes")
    parser.add_argument("--retries", type=int, help="Times a failed FASTBuild run is retried (default: 0)")
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in ExecutionMode],
        help="Execution mode (auto picks strict for one process, parallel otherwise)",
    )
    parser.add_argument("--log-level", choices=list(Console.LEVELS), help="Console verbosity")
    parser.add_argument("--settings", help="Settings file (default: ./bffgen.toml|json|yaml|yml)")
    parser.add_argument("--dry-run", action="store_true", help="Print commands and files without executing or writing them")
    return parser.parse_args(list(argv))


def _build_context(args: Namespace, settings: GlobalSettings) -> GenerationContext:
    max_process = args.max_process if args.max_process is not None else settings.max_process
    if max_process < 1:
        raise ValueError("--maxprocess must be at least 1")
    retries = args.retries if args.retries is not None else settings.retries
    if retries < 0:
        raise ValueError("--retries must not be negative")
    return GenerationContext(
        configuration=args.configuration or settings.configuration,
        platform=args.platform or settings.platform,
        project=args.project,
        solution=Path(args.solution) if args.solution else None,
        fbuild_path=args.fbuild_path or settings.fbuild_path,
        fbuild_args=args.fbuild_args if args.fbuild_args is not None else settings.fbuild_args,
        brokerage=args.brokerage if args.brokerage is not None else settings.brokerage,
        generate_only=args.generate_only,
        regenerate=args.regenerate,
        unity=settings.unity if args.unity is None else args.unity,
        max_process=max_process,
        retries=retries,
        execution_mode=ExecutionMode(args.mode) if args.mode else settings.execution_mode,
        dry_run=args.dry_run,
    )


def main(argv: Iterable[str] | None = None) -> int:
    args = _parse_arguments(sys.argv[1:] if argv is None else argv)
    workspace = Path.cwd()

    try:
        settings = load_settings(Path(args.settings) if args.settings else None, directory=workspace)
        console = Console(args.log_level or settings.log_level, dry_run=args.dry_run)
        context = _build_context(args, settings)
    except (OSError, TypeError, ValueError) as exc:
        print(f"Error: {exc}")
        return 2

    runner: SubprocessCommandRunner | RecordingCommandRunner
    if args.dry_run:
        runner = RecordingCommandRunner()
    else:
        runner = SubprocessCommandRunner()

    generator = Generator(context, console=console, runner=runner)
    try:
        result, report = generator.run()
    except (BffgenError, KeyError, OSError, ValueError) as exc:
        print(f"Error: {exc}")
        return 2

    if args.dry_run and isinstance(runner, RecordingCommandRunner):
        for line in runner.iter_formatted(workspace=workspace):
            print(line)

    if report is None:
        for line in result.summary_lines():
            print(line)
        return 1 if result.failures else 0

    for line in report.summary_lines():
        print(line)
    return 0 if report.succeeded else 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
