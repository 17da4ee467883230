"""Toolchain command-line providers and registry utilities."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Sequence

from .project_model import ProjectModel


class Tool(str, Enum):
    COMPILER = "cl"
    RESOURCE_COMPILER = "rc"
    LINKER = "link"
    LIBRARIAN = "lib"


class SwitchStyle(str, Enum):
    FLAG = "flag"
    ENUM = "enum"
    PATH = "path"
    LIST = "list"
    RAW = "raw"


@dataclass(frozen=True, slots=True)
class Switch:
    """How one metadata entry is rendered on a tool command line."""

    metadata: str
    style: SwitchStyle
    switch: str = ""
    values: Mapping[str, str] = field(default_factory=dict)
    false_switch: str = ""


def _flag(metadata: str, switch: str, false_switch: str = "") -> Switch:
    return Switch(metadata, SwitchStyle.FLAG, switch, false_switch=false_switch)


def _enum(metadata: str, values: Mapping[str, str]) -> Switch:
    return Switch(metadata, SwitchStyle.ENUM, values=values)


def _path(metadata: str, switch: str) -> Switch:
    return Switch(metadata, SwitchStyle.PATH, switch)


def _list(metadata: str, switch: str = "") -> Switch:
    return Switch(metadata, SwitchStyle.LIST, switch)


def _raw(metadata: str) -> Switch:
    return Switch(metadata, SwitchStyle.RAW)


_CL_SWITCHES: Sequence[Switch] = (
    _flag("SuppressStartupBanner", "/nologo"),
    _list("AdditionalIncludeDirectories", "/I"),
    _list("ForcedIncludeFiles", "/FI"),
    _list("PreprocessorDefinitions", "/D"),
    _list("UndefinePreprocessorDefinitions", "/U"),
    _enum(
        "DebugInformationFormat",
        {"None": "", "OldStyle": "/Z7", "ProgramDatabase": "/Zi", "EditAndContinue": "/ZI"},
    ),
    _enum(
        "WarningLevel",
        {
            "TurnOffAllWarnings": "/W0",
            "Level1": "/W1",
            "Level2": "/W2",
            "Level3": "/W3",
            "Level4": "/W4",
            "EnableAllWarnings": "/Wall",
        },
    ),
    _flag("TreatWarningAsError", "/WX", "/WX-"),
    _list("DisableSpecificWarnings", "/wd"),
    _flag("SDLCheck", "/sdl", "/sdl-"),
    _flag("MultiProcessorCompilation", "/MP"),
    _enum("Optimization", {"Disabled": "/Od", "MinSpace": "/O1", "MaxSpeed": "/O2", "Full": "/Ox"}),
    _enum(
        "InlineFunctionExpansion",
        {"Default": "", "Disabled": "/Ob0", "OnlyExplicitInline": "/Ob1", "AnySuitable": "/Ob2"},
    ),
    _flag("IntrinsicFunctions", "/Oi"),
    _enum("FavorSizeOrSpeed", {"Neither": "", "Size": "/Os", "Speed": "/Ot"}),
    _flag("OmitFramePointers", "/Oy", "/Oy-"),
    _flag("WholeProgramOptimization", "/GL"),
    _flag("StringPooling", "/GF"),
    _enum("ExceptionHandling", {"false": "", "Sync": "/EHsc", "Async": "/EHa", "SyncCThrow": "/EHs"}),
    _enum(
        "BasicRuntimeChecks",
        {
            "Default": "",
            "StackFrameRuntimeCheck": "/RTCs",
            "UninitializedLocalUsageCheck": "/RTCu",
            "EnableFastChecks": "/RTC1",
        },
    ),
    _enum(
        "RuntimeLibrary",
        {
            "MultiThreaded": "/MT",
            "MultiThreadedDebug": "/MTd",
            "MultiThreadedDLL": "/MD",
            "MultiThreadedDebugDLL": "/MDd",
        },
    ),
    _flag("BufferSecurityCheck", "/GS", "/GS-"),
    _flag("FunctionLevelLinking", "/Gy", "/Gy-"),
    _enum(
        "EnableEnhancedInstructionSet",
        {
            "NotSet": "",
            "StreamingSIMDExtensions2": "/arch:SSE2",
            "AdvancedVectorExtensions": "/arch:AVX",
            "AdvancedVectorExtensions2": "/arch:AVX2",
            "NoExtensions": "/arch:IA32",
        },
    ),
    _enum("FloatingPointModel", {"Precise": "/fp:precise", "Strict": "/fp:strict", "Fast": "/fp:fast"}),
    _flag("TreatWChar_tAsBuiltInType", "/Zc:wchar_t", "/Zc:wchar_t-"),
    _flag("ForceConformanceInForLoopScope", "/Zc:forScope", "/Zc:forScope-"),
    _flag("ConformanceMode", "/permissive-"),
    _flag("RuntimeTypeInfo", "/GR", "/GR-"),
    _enum(
        "LanguageStandard",
        {
            "Default": "",
            "stdcpp14": "/std:c++14",
            "stdcpp17": "/std:c++17",
            "stdcpp20": "/std:c++20",
            "stdcpplatest": "/std:c++latest",
        },
    ),
    _enum("PrecompiledHeader", {"NotUsing": "", "Create": "/Yc", "Use": "/Yu"}),
    _path("PrecompiledHeaderOutputFile", "/Fp"),
    _path("AssemblerListingLocation", "/Fa"),
    _path("ObjectFileName", "/Fo"),
    _path("ProgramDataBaseFileName", "/Fd"),
    _enum("CallingConvention", {"Cdecl": "/Gd", "FastCall": "/Gr", "StdCall": "/Gz", "VectorCall": "/Gv"}),
    _enum(
        "ErrorReporting",
        {
            "None": "/errorReport:none",
            "Prompt": "/errorReport:prompt",
            "Queue": "/errorReport:queue",
            "Send": "/errorReport:send",
        },
    ),
    _raw("AdditionalOptions"),
)

_RC_SWITCHES: Sequence[Switch] = (
    _flag("SuppressStartupBanner", "/nologo"),
    _list("PreprocessorDefinitions", "/D"),
    _list("UndefinePreprocessorDefinitions", "/u"),
    _list("AdditionalIncludeDirectories", "/I"),
    _flag("IgnoreStandardIncludePath", "/X"),
    _flag("ShowProgress", "/v"),
    _flag("NullTerminateStrings", "/n"),
    _path("Culture", "/l"),
    _path("ResourceOutputFileName", "/fo"),
    _raw("AdditionalOptions"),
)

_LINK_SWITCHES: Sequence[Switch] = (
    _path("OutputFile", "/OUT:"),
    _flag("SuppressStartupBanner", "/NOLOGO"),
    _list("AdditionalLibraryDirectories", "/LIBPATH:"),
    _list("AdditionalDependencies"),
    _flag("IgnoreAllDefaultLibraries", "/NODEFAULTLIB"),
    _list("IgnoreSpecificDefaultLibraries", "/NODEFAULTLIB:"),
    _path("ModuleDefinitionFile", "/DEF:"),
    _enum(
        "GenerateDebugInformation",
        {"false": "", "true": "/DEBUG", "DebugFull": "/DEBUG:FULL", "DebugFastLink": "/DEBUG:FASTLINK"},
    ),
    _path("ProgramDatabaseFile", "/PDB:"),
    _flag("GenerateMapFile", "/MAP"),
    _enum(
        "SubSystem",
        {
            "NotSet": "",
            "Console": "/SUBSYSTEM:CONSOLE",
            "Windows": "/SUBSYSTEM:WINDOWS",
            "Native": "/SUBSYSTEM:NATIVE",
        },
    ),
    _flag("OptimizeReferences", "/OPT:REF", "/OPT:NOREF"),
    _flag("EnableCOMDATFolding", "/OPT:ICF", "/OPT:NOICF"),
    _enum(
        "LinkTimeCodeGeneration",
        {
            "Default": "",
            "UseLinkTimeCodeGeneration": "/LTCG",
            "UseFastLinkTimeCodeGeneration": "/LTCG:incremental",
        },
    ),
    _flag("RandomizedBaseAddress", "/DYNAMICBASE", "/DYNAMICBASE:NO"),
    _flag("DataExecutionPrevention", "/NXCOMPAT", "/NXCOMPAT:NO"),
    _path("ImportLibrary", "/IMPLIB:"),
    _path("ProfileGuidedDatabase", "/PGD:"),
    _enum(
        "TargetMachine",
        {"MachineX86": "/MACHINE:X86", "MachineX64": "/MACHINE:X64", "MachineARM64": "/MACHINE:ARM64"},
    ),
    _raw("AdditionalOptions"),
)

_LIB_SWITCHES: Sequence[Switch] = (
    _path("OutputFile", "/OUT:"),
    _flag("SuppressStartupBanner", "/NOLOGO"),
    _list("AdditionalLibraryDirectories", "/LIBPATH:"),
    _list("AdditionalDependencies"),
    _flag("IgnoreAllDefaultLibraries", "/NODEFAULTLIB"),
    _flag("LinkTimeCodeGeneration", "/LTCG"),
    _enum(
        "TargetMachine",
        {"MachineX86": "/MACHINE:X86", "MachineX64": "/MACHINE:X64", "MachineARM64": "/MACHINE:ARM64"},
    ),
    _raw("AdditionalOptions"),
)


def _quote(value: str) -> str:
    if value.startswith('"') and value.endswith('"'):
        return value
    if any(char.isspace() for char in value):
        return f'"{value}"'
    return value


def _split_list(value: str) -> List[str]:
    entries: List[str] = []
    for part in value.split(";"):
        part = part.strip()
        # Unexpanded inherited metadata such as %(AdditionalIncludeDirectories).
        if not part or part.startswith("%("):
            continue
        entries.append(part)
    return entries


def _is_true(value: str) -> bool:
    return value.strip().lower() == "true"


class CommandLineProvider:
    """Turns tool metadata into the options text for one tool invocation."""

    name = "abstract"

    def command_line(
        self,
        tool: Tool,
        metadata: Mapping[str, str],
        skip: Iterable[str] = (),
    ) -> str:
        raise NotImplementedError


class MsvcCommandLineProvider(CommandLineProvider):
    """Command lines for the Microsoft C/C++ toolchain (cl, rc, link, lib)."""

    name = "msvc"

    TABLES: Mapping[Tool, Sequence[Switch]] = {
        Tool.COMPILER: _CL_SWITCHES,
        Tool.RESOURCE_COMPILER: _RC_SWITCHES,
        Tool.LINKER: _LINK_SWITCHES,
        Tool.LIBRARIAN: _LIB_SWITCHES,
    }

    def command_line(
        self,
        tool: Tool,
        metadata: Mapping[str, str],
        skip: Iterable[str] = (),
    ) -> str:
        skipped = set(skip)
        parts: List[str] = []
        trailing: List[str] = []
        for rule in self.TABLES[Tool(tool)]:
            if rule.metadata in skipped:
                continue
            value = str(metadata.get(rule.metadata, "")).strip()
            if not value:
                continue
            if rule.metadata == "AdditionalIncludeDirectories":
                value = value.replace("\\\\", "\\").replace("\\", "/")
            if rule.style is SwitchStyle.RAW:
                trailing.append(value)
                continue
            parts.extend(self._render(rule, value, metadata))
        return " ".join(part for part in [*parts, *trailing] if part)

    @staticmethod
    def _render(rule: Switch, value: str, metadata: Mapping[str, str]) -> List[str]:
        if rule.style is SwitchStyle.FLAG:
            return [rule.switch if _is_true(value) else rule.false_switch]
        if rule.style is SwitchStyle.ENUM:
            if value not in rule.values:
                allowed = ", ".join(sorted(rule.values))
                raise ValueError(f"Unsupported value '{value}' for {rule.metadata} (allowed: {allowed})")
            switch = rule.values[value]
            if rule.metadata == "PrecompiledHeader" and switch:
                header = metadata.get("PrecompiledHeaderFile", "").strip() or "stdafx.h"
                return [f'{switch}"{header}"']
            return [switch]
        if rule.style is SwitchStyle.PATH:
            return [f'{rule.switch}"{value}"']
        if rule.style is SwitchStyle.LIST:
            return [f"{rule.switch}{_quote(entry)}" for entry in _split_list(value)]
        raise ValueError(f"Unhandled switch style {rule.style}")


@dataclass(slots=True)
class ToolchainContext:
    """Tool locations for one project, replacing process-wide path state."""

    platform: str
    vc_targets_path: str
    vc_install_dir: str
    vc_exe_path: str
    vs_install_dir: str = ""
    windows_sdk_dir: str = ""
    windows_sdk_version: str = "8.1"
    platform_toolset_version: str = ""

    @property
    def architecture(self) -> str:
        return "x64" if self.platform.lower() == "x64" else "x86"

    @classmethod
    def from_project(cls, project: ProjectModel, platform: str) -> "ToolchainContext":
        vc_targets_path = project.require("VCTargetsPathEffective", "VCTargetsPath")
        vc_install_dir = project.require("VCInstallDir")
        if platform.lower() == "x64":
            vc_exe_path = project.require("VC_ExecutablePath_x64_x64")
        else:
            vc_exe_path = project.require("VC_ExecutablePath_x86_x86")
        return cls(
            platform=platform,
            vc_targets_path=vc_targets_path,
            vc_install_dir=vc_install_dir,
            vc_exe_path=vc_exe_path,
            vs_install_dir=project.property("VSInstallDir"),
            windows_sdk_dir=project.property("WindowsSdkDir"),
            windows_sdk_version=project.property("WindowsTargetPlatformVersion") or "8.1",
            platform_toolset_version=project.property("PlatformToolsetVersion"),
        )


_MSVC_RUNTIME_PATTERNS = (
    "msobj*.dll",
    "mspdb*.dll",
    "mspft*.dll",
    "msvcp*.dll",
    "tbbmalloc.dll",
    "vcmeta.dll",
    "vcruntime*.dll",
)


def compiler_extra_files(exe_dir: Path) -> List[str]:
    """Files the compiler needs next to ``cl.exe``, relative to ``exe_dir``."""

    files = ["c1.dll", "c1xx.dll", "c2.dll"]
    if (exe_dir / "1033" / "clui.dll").is_file():
        files.append("1033/clui.dll")
    elif exe_dir.is_dir():
        localized = sorted(
            child.name
            for child in exe_dir.iterdir()
            if child.is_dir() and child.name.isdigit() and (child / "clui.dll").is_file()
        )
        if localized:
            files.append(f"{localized[0]}/clui.dll")
    files.append("mspdbsrv.exe")
    if exe_dir.is_dir():
        for pattern in _MSVC_RUNTIME_PATTERNS:
            files.extend(sorted(path.name for path in exe_dir.glob(pattern) if path.is_file()))
    return files


def resource_compiler_path(context: ToolchainContext) -> str:
    """Path of ``rc.exe`` relative to the Windows SDK root, with leading backslash."""

    versioned = f"\\bin\\{context.windows_sdk_version}\\{context.architecture}\\rc.exe"
    if Path(f"{context.windows_sdk_dir}{versioned}".replace("\\", "/")).is_file():
        return versioned
    return f"\\bin\\{context.architecture}\\rc.exe"


def environment_setup_command(context: ToolchainContext) -> str:
    """Batch command that loads the native toolchain environment."""

    vcvars = f"{context.vc_install_dir}Auxiliary\\Build\\vcvarsall.bat"
    return f'%comspec% /c "{vcvars}" {context.architecture} {context.windows_sdk_version}'


class ToolchainRegistry:
    def __init__(self, providers: Mapping[str, CommandLineProvider] | None = None) -> None:
        self._providers: Dict[str, CommandLineProvider] = {}
        if providers:
            for name, provider in providers.items():
                self.register(name, provider)

    @classmethod
    def with_builtins(cls) -> "ToolchainRegistry":
        return cls({MsvcCommandLineProvider.name: MsvcCommandLineProvider()})

    def register(self, name: str, provider: CommandLineProvider) -> None:
        normalized = name.strip().lower()
        if not normalized:
            raise ValueError("Toolchain name cannot be empty")
        self._providers[normalized] = provider

    def get(self, name: str) -> CommandLineProvider:
        provider = self._providers.get(name.strip().lower())
        if provider is None:
            available = ", ".join(sorted(self._providers)) or "<none>"
            raise KeyError(f"Unknown toolchain '{name}'. Available toolchains: {available}")
        return provider

    def available(self) -> Iterable[str]:
        return self._providers.keys()


__all__ = [
    "CommandLineProvider",
    "MsvcCommandLineProvider",
    "Switch",
    "SwitchStyle",
    "Tool",
    "ToolchainContext",
    "ToolchainRegistry",
    "compiler_extra_files",
    "environment_setup_command",
    "resource_compiler_path",
]
