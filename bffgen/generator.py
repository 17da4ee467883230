"""Run driver: resolve projects, write build graphs, hand them to the scheduler."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Tuple
import os

from core.command_runner import CommandRunner, SubprocessCommandRunner

from .assembler import AssemblyContext, BuildGraph, assemble, propagate_link_input
from .batcher import UnityPolicy
from .console import Console
from .errors import EvaluationError, ProjectLoadError
from .fingerprint import should_regenerate
from .project_model import DocumentModelProvider, ProjectModelProvider
from .resolver import ProjectGraph, SolutionResolution, resolve_solution
from .scheduler import BuildJob, ExecutionMode, ExecutionReport, ProjectState, Scheduler
from .scripts import ScriptDialect, launcher_command, launcher_path, launcher_script
from .toolchains import ToolchainContext, ToolchainRegistry


@dataclass(slots=True)
class GenerationContext:
    """Options for one run, passed explicitly instead of process-wide state."""

    configuration: str = "Debug"
    platform: str = "Win32"
    project: str | None = None
    solution: Path | None = None
    fbuild_path: str = "FBuild.exe"
    fbuild_args: str = "-dist"
    brokerage: str = ""
    generate_only: bool = False
    regenerate: bool = False
    unity: bool = False
    max_process: int = 1
    retries: int = 0
    execution_mode: ExecutionMode = ExecutionMode.AUTO
    toolchain: str = "msvc"
    dry_run: bool = False
    dialect: ScriptDialect = field(default_factory=ScriptDialect.native)


@dataclass(slots=True)
class GenerationResult:
    graph: ProjectGraph
    build_graphs: Dict[Path, BuildGraph] = field(default_factory=dict)
    written: List[Path] = field(default_factory=list)
    up_to_date: List[Path] = field(default_factory=list)
    failures: Dict[Path, str] = field(default_factory=dict)
    excluded: Dict[str, str] = field(default_factory=dict)
    # Projects that never made it into the graph: path -> (name, reason).
    skipped: Dict[Path, Tuple[str, str]] = field(default_factory=dict)

    @property
    def evaluated(self) -> int:
        return len(self.graph) + len(self.skipped)

    def summary_lines(self) -> List[str]:
        lines = [
            f"{len(self.written)} build graph(s) written, {len(self.up_to_date)} up to date, "
            f"{len(self.failures)} failed."
        ]
        for path, reason in self.failures.items():
            lines.append(f"\t{path}: {reason}")
        return lines


def write_text_atomic(path: Path, text: str, *, newline: str = "\n", executable: bool = False) -> None:
    """Replace ``path`` with ``text`` so readers never see a partial file."""

    temporary = path.with_name(f".{path.name}.tmp")
    try:
        with temporary.open("w", encoding="utf-8", newline=newline) as handle:
            handle.write(text)
        if executable:
            temporary.chmod(0o755)
        os.replace(temporary, path)
    except OSError:
        temporary.unlink(missing_ok=True)
        raise


class Generator:
    def __init__(
        self,
        context: GenerationContext,
        *,
        provider: ProjectModelProvider | None = None,
        registry: ToolchainRegistry | None = None,
        console: Console | None = None,
        runner: CommandRunner | None = None,
    ) -> None:
        self.context = context
        self.provider = provider or DocumentModelProvider()
        self.registry = registry or ToolchainRegistry.with_builtins()
        self.console = console or Console()
        self.runner = runner or SubprocessCommandRunner()

    @property
    def _newline(self) -> str:
        return "\r\n" if self.context.dialect is ScriptDialect.BATCH else "\n"

    def target_projects(self) -> Tuple[List[Path], Path | None, SolutionResolution]:
        """Return the starting projects, the solution directory and the solution resolution."""

        context = self.context
        if context.solution is not None:
            solution_path = Path(context.solution)
            if not solution_path.is_file():
                raise ProjectLoadError(solution_path, "file does not exist")
            solution = self.provider.load_solution(solution_path)
            resolution = resolve_solution(solution, context.project)
            for name, reason in resolution.excluded.items():
                self.console.error(f"Excluding {name}: {reason}")
            return [entry.path for entry in resolution.order], solution.directory, resolution
        if context.project:
            return [Path(context.project).resolve()], None, SolutionResolution()
        raise ValueError("No solution or project provided")

    def generate(self) -> GenerationResult:
        context = self.context
        paths, solution_dir, resolution = self.target_projects()
        graph = ProjectGraph(
            self.provider,
            configuration=context.configuration,
            platform=context.platform,
            solution_dir=solution_dir,
            console=self.console,
        )
        graph.evaluate(paths)
        graph.add_order_dependencies(resolution.dependencies)
        result = GenerationResult(graph=graph, excluded=dict(resolution.excluded))
        for path, skipped in resolution.skipped.items():
            if graph.node_for(path) is None:
                result.skipped[path] = skipped
        for path, reason in graph.unloadable.items():
            result.skipped.setdefault(path, (path.name, reason))
        for node in graph.excluded():
            self.console.error(f"Excluding {node.name}: {node.excluded_reason}")
            result.excluded[node.name] = node.excluded_reason or ""

        commands = self.registry.get(context.toolchain)
        unity = UnityPolicy(enabled=context.unity)
        for node in graph.build_order():
            try:
                toolchain = ToolchainContext.from_project(node.model, context.platform)
                build = assemble(
                    node,
                    AssemblyContext(
                        toolchain=toolchain,
                        commands=commands,
                        configuration=context.configuration,
                        platform=context.platform,
                        unity=unity,
                        brokerage=context.brokerage,
                        dialect=context.dialect,
                    ),
                )
            except (EvaluationError, ValueError) as exc:
                self.console.error(f"Skipping {node.name}: {exc}")
                result.failures[node.path] = str(exc)
                continue

            for dependent in propagate_link_input(graph, build):
                self.console.debug(f"{dependent.name} links {build.exposed_link_input}")
            result.build_graphs[node.path] = build
            if not build.has_compile_actions:
                self.console.debug(f"Project {node.name} has no actions to compile.")

            if not should_regenerate(
                node.path,
                context.platform,
                context.configuration,
                build.graph_file,
                force=context.regenerate,
            ):
                self.console.info(f"{build.graph_file.name} is up to date")
                result.up_to_date.append(build.graph_file)
                continue
            self._write_graph(build)
            result.written.append(build.graph_file)
        return result

    def _write_graph(self, build: BuildGraph) -> None:
        if self.context.dry_run:
            self.console.dry(f"write {build.graph_file}")
            for hook in build.hook_scripts:
                self.console.dry(f"write {hook.path}")
            return
        for hook in build.hook_scripts:
            write_text_atomic(hook.path, hook.text, newline=self._newline, executable=True)
        write_text_atomic(build.graph_file, build.render())
        self.console.debug(f"Wrote {build.graph_file}")

    def jobs(self, result: GenerationResult) -> List[BuildJob]:
        context = self.context
        jobs: List[BuildJob] = []
        for path, build in result.build_graphs.items():
            node = build.node
            launcher = launcher_path(node.model, context.dialect)
            if build.has_compile_actions and build.toolchain is not None:
                text = launcher_script(
                    node.model,
                    build.toolchain,
                    executor=context.fbuild_path,
                    configuration=context.configuration,
                    platform=context.platform,
                    brokerage=context.brokerage,
                    dialect=context.dialect,
                )
                if context.dry_run:
                    self.console.dry(f"write {launcher}")
                else:
                    write_text_atomic(launcher, text, newline=self._newline, executable=True)
            jobs.append(
                BuildJob(
                    name=node.name,
                    project_path=path,
                    command=launcher_command(launcher, build.graph_file, context.fbuild_args, context.dialect),
                    cwd=node.model.directory,
                    has_compile_actions=build.has_compile_actions,
                    dependencies=[dependency.path for dependency in result.graph.dependencies_of(node)],
                )
            )
        return jobs

    def run(self) -> Tuple[GenerationResult, ExecutionReport | None]:
        """Generate every graph, then execute them unless ``generate_only`` is set."""

        result = self.generate()
        if self.context.generate_only:
            return result, None

        scheduler = Scheduler(
            self.runner,
            self.console,
            max_process=self.context.max_process,
            retries=self.context.retries,
            mode=self.context.execution_mode,
        )
        report = scheduler.run(self.jobs(result), evaluated=result.evaluated)
        for node in result.graph.nodes:
            if node.path in result.failures:
                report.record(node.path, node.name, ProjectState.FAILED, result.failures[node.path])
            elif node.excluded_reason is not None:
                report.record(node.path, node.name, ProjectState.SKIPPED, node.excluded_reason)
        for path, (name, reason) in result.skipped.items():
            report.record(path, name, ProjectState.SKIPPED, reason)
        return result, report


__all__ = ["GenerationContext", "GenerationResult", "Generator", "write_text_atomic"]
