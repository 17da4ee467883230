"""Composition of one project's build graph."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath, PureWindowsPath
from typing import List

from .batcher import ActionGroup, UnityPolicy, batch
from .bff import BffDocument, BffNode
from .fingerprint import compute_fingerprint
from .items import ToolKind, collect_compile_items
from .project_model import ProjectModel
from .resolver import BuildType, ProjectGraph, ProjectNode
from .scripts import ScriptDialect, hook_script, hook_script_path
from .toolchains import (
    CommandLineProvider,
    Tool,
    ToolchainContext,
    compiler_extra_files,
    resource_compiler_path,
)

PREBUILD = "prebuild"
POSTBUILD = "postbuild"
OUTPUT = "output"
ALIAS = "all"

LINK_SKIPPED = ("OutputFile", "ProfileGuidedDatabase")
LIB_SKIPPED = ("OutputFile",)


@dataclass(slots=True)
class AssemblyContext:
    """Everything :func:`assemble` needs besides the project itself."""

    toolchain: ToolchainContext
    commands: CommandLineProvider
    configuration: str
    platform: str
    unity: UnityPolicy = field(default_factory=UnityPolicy)
    brokerage: str = ""
    dialect: ScriptDialect = field(default_factory=ScriptDialect.native)


@dataclass(slots=True)
class HookScript:
    stage: str
    path: Path
    text: str


@dataclass(slots=True)
class BuildGraph:
    node: ProjectNode
    graph_file: Path
    fingerprint: str
    document: BffDocument
    groups: List[ActionGroup] = field(default_factory=list)
    exposed_link_input: str | None = None
    hook_scripts: List[HookScript] = field(default_factory=list)
    toolchain: ToolchainContext | None = None

    @property
    def has_compile_actions(self) -> bool:
        return bool(self.groups)

    @property
    def alias_target(self) -> str:
        return POSTBUILD if any(hook.stage == POSTBUILD for hook in self.hook_scripts) else OUTPUT

    def render(self) -> str:
        return self.document.render()


def graph_file_path(project_path: Path, configuration: str, platform: str) -> Path:
    """``<project file>_<Config>_<Platform>.bff`` beside the project."""

    suffix = f"_{configuration.replace(' ', '')}_{platform.replace(' ', '')}.bff"
    return project_path.parent / f"{project_path.name}{suffix}"


def anchor_path(project: ProjectModel, value: str) -> str:
    """Make ``value`` absolute against the project directory, with ``/`` separators."""

    text = value.strip().strip('"')
    if PureWindowsPath(text).is_absolute() or text.startswith(("/", "\\")):
        return text.replace("\\", "/")
    return (PurePosixPath(project.directory.as_posix()) / text.replace("\\", "/")).as_posix()


def hook_command(project: ProjectModel, event: str) -> str:
    """Command of the first ``event`` item, else of the ``event`` item definition."""

    items = project.get_items(event)
    if items and items[0].get("Command").strip():
        return items[0].get("Command").strip()
    return project.item_definition(event).get("Command", "").strip()


def _settings_node(project: ProjectModel) -> BffNode:
    temp = project.property("Temp")
    environment = [
        f"INCLUDE={project.property('IncludePath')}",
        f"LIB={project.property('LibraryPath')}",
        f"LIBPATH={project.property('ReferencePath')}",
        f"PATH={project.property('Path')}",
        f"TMP={temp}",
        f"TEMP={temp}",
        f"SystemRoot={project.property('SystemRoot')}",
    ]
    return BffNode("Settings").set("Environment", environment)


def _compiler_nodes(toolchain: ToolchainContext) -> List[BffNode]:
    extra_files = [f"$Root$/{name}" for name in compiler_extra_files(Path(toolchain.vc_exe_path))]
    msvc = (
        BffNode("Compiler", "msvc")
        .set("Root", "$VCExePath$")
        .set("Executable", "$Root$/cl.exe")
        .set("ExtraFiles", extra_files)
    )
    rc = (
        BffNode("Compiler", "rc")
        .set("Executable", f"$WindowsSDKBasePath${resource_compiler_path(toolchain)}")
        .set("CompilerFamily", "custom")
    )
    return [msvc, rc]


def _exec_node(stage: str, script: Path, depends_on: str | None = None) -> BffNode:
    node = (
        BffNode("Exec", stage)
        .set("ExecExecutable", str(script))
        .set("ExecInput", str(script))
        .set("ExecOutput", f"{script}.txt")
        .set("ExecUseStdOutAsOutput", True)
    )
    if depends_on:
        node.set("PreBuildDependencies", depends_on)
    return node


def _group_nodes(index: int, group: ActionGroup, *, prebuild: bool) -> List[BffNode]:
    nodes: List[BffNode] = []
    action = BffNode("ObjectList", f"action_{index}")
    action.set("Compiler", "rc" if group.kind is ToolKind.RESOURCE else "msvc")
    action.set("CompilerOutputPath", group.output_dir)
    if group.unity:
        unity = (
            BffNode("Unity", f"unity_{index}")
            .set("UnityInputFiles", list(group.sources))
            .set("UnityOutputPath", group.output_dir)
            .set("UnityNumFiles", group.unity_file_count)
        )
        if prebuild:
            unity.set("PreBuildDependencies", PREBUILD)
        nodes.append(unity)
        action.set("CompilerInputUnity", [f"unity_{index}"])
    else:
        action.set("CompilerInputFiles", list(group.sources))
    action.set("CompilerOptions", group.options)
    if group.output_extension:
        action.set("CompilerOutputExtension", group.output_extension)
    header = group.precompiled_header
    if header is not None:
        action.set("PCHOptions", header.options)
        action.set("PCHInputFile", header.input_file)
        action.set("PCHOutputFile", header.output_file)
    if prebuild:
        action.set("PreBuildDependencies", PREBUILD)
    nodes.append(action)
    return nodes


def _link_inputs_text(node: ProjectNode) -> str:
    return "".join(f' "{path}"' for path in node.additional_link_inputs)


def _output_node(
    node: ProjectNode,
    context: AssemblyContext,
    actions: List[str],
    library_compiler_options: str,
) -> tuple[BffNode, str | None]:
    project = node.model
    build_type = node.build_type

    if build_type is BuildType.STATIC_LIB:
        definition = project.item_definition("Lib")
        output_file = definition.get("OutputFile", "").replace("\\", "/")
        options = context.commands.command_line(Tool.LIBRARIAN, definition, LIB_SKIPPED)
        output = (
            BffNode("Library", OUTPUT)
            .set("Compiler", "msvc")
            .set("CompilerOptions", f'"%1" /Fo"%2" /c {library_compiler_options}')
            .set("CompilerOutputPath", project.property("IntDir"))
            .set("Librarian", "$VCExePath$\\lib.exe")
            .set("LibrarianOptions", f'"%1" /OUT:"%2" {options}{_link_inputs_text(node)}')
            .set("LibrarianOutput", output_file)
            .set("LibrarianAdditionalInputs", actions)
        )
        exposed = anchor_path(project, output_file) if output_file else None
        return output, exposed

    definition = project.item_definition("Link")
    output_file = definition.get("OutputFile", "").replace("\\", "/")
    options = context.commands.command_line(Tool.LINKER, definition, LINK_SKIPPED)
    function = "Executable" if build_type is BuildType.APPLICATION else "DLL"
    output = (
        BffNode(function, OUTPUT)
        .set("Linker", "$VCExePath$\\link.exe")
        .set("LinkerOptions", f'"%1" /OUT:"%2" {options}{_link_inputs_text(node)}')
        .set("LinkerOutput", output_file)
        .set("Libraries", actions)
    )
    import_library = definition.get("ImportLibrary", "").strip()
    exposed = anchor_path(project, import_library) if import_library else None
    return output, exposed


def assemble(node: ProjectNode, context: AssemblyContext) -> BuildGraph:
    """Build the graph for ``node``; its dependencies must already be assembled.

    Raises :class:`ValueError` for malformed item metadata (unknown switch
    values, more than one precompiled header creator).
    """

    project = node.model
    toolchain = context.toolchain
    try:
        fingerprint = compute_fingerprint(project.path, context.platform, context.configuration)
    except OSError:
        # No header line means the next run regenerates.
        fingerprint = ""

    document = BffDocument(header=fingerprint)
    document.variable("VSBasePath", toolchain.vs_install_dir)
    document.variable("VCBasePath", toolchain.vc_install_dir)
    document.variable("VCExePath", toolchain.vc_exe_path)
    document.variable("WindowsSDKBasePath", toolchain.windows_sdk_dir)
    document.add(_settings_node(project))
    for compiler in _compiler_nodes(toolchain):
        document.add(compiler)

    hooks: List[HookScript] = []
    pre_command = hook_command(project, "PreBuildEvent")
    if pre_command:
        script = hook_script_path(project, PREBUILD, context.dialect)
        hooks.append(
            HookScript(
                PREBUILD,
                script,
                hook_script(toolchain, pre_command, brokerage=context.brokerage, dialect=context.dialect),
            )
        )
        document.add(_exec_node(PREBUILD, script))

    collected = collect_compile_items(project, context.commands)
    groups = batch(collected.items, unity=context.unity)
    actions: List[str] = []
    for index, group in enumerate(groups):
        for graph_node in _group_nodes(index, group, prebuild=bool(pre_command)):
            document.add(graph_node)
        actions.append(f"action_{index}")

    output, exposed = _output_node(node, context, actions, collected.library_compiler_options)
    if pre_command and not actions:
        output.set("PreBuildDependencies", PREBUILD)
    document.add(output)

    post_command = hook_command(project, "PostBuildEvent")
    if post_command:
        script = hook_script_path(project, POSTBUILD, context.dialect)
        hooks.append(
            HookScript(
                POSTBUILD,
                script,
                hook_script(toolchain, post_command, brokerage=context.brokerage, dialect=context.dialect),
            )
        )
        document.add(_exec_node(POSTBUILD, script, depends_on=OUTPUT))

    graph = BuildGraph(
        node=node,
        graph_file=graph_file_path(project.path, context.configuration, context.platform),
        fingerprint=fingerprint,
        document=document,
        groups=groups,
        exposed_link_input=exposed,
        hook_scripts=hooks,
        toolchain=toolchain,
    )
    document.add(BffNode("Alias", ALIAS).set("Targets", [graph.alias_target]))
    return graph


def propagate_link_input(project_graph: ProjectGraph, graph: BuildGraph) -> List[ProjectNode]:
    """Push ``graph``'s exposed output into each direct linking dependent once."""

    if not graph.exposed_link_input:
        return []
    updated: List[ProjectNode] = []
    for dependent in project_graph.link_dependents_of(graph.node):
        if dependent.add_link_input(graph.exposed_link_input):
            updated.append(dependent)
    return updated


__all__ = [
    "ALIAS",
    "AssemblyContext",
    "BuildGraph",
    "HookScript",
    "OUTPUT",
    "POSTBUILD",
    "PREBUILD",
    "anchor_path",
    "assemble",
    "graph_file_path",
    "hook_command",
    "propagate_link_input",
]
