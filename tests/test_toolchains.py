from __future__ import annotations

from pathlib import Path
import tempfile
import unittest

from bffgen.errors import EvaluationError
from bffgen.project_model import ProjectModel
from bffgen.toolchains import (
    MsvcCommandLineProvider,
    Tool,
    ToolchainContext,
    ToolchainRegistry,
    compiler_extra_files,
    environment_setup_command,
    resource_compiler_path,
)


class MsvcCommandLineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.provider = MsvcCommandLineProvider()

    def test_switch_order_follows_table_and_additional_options_last(self) -> None:
        options = self.provider.command_line(
            Tool.COMPILER,
            {
                "AdditionalOptions": "/bigobj",
                "Optimization": "Disabled",
                "WarningLevel": "Level3",
                "PreprocessorDefinitions": "WIN32;_DEBUG;%(PreprocessorDefinitions)",
                "SuppressStartupBanner": "true",
            },
        )

        self.assertEqual(options, "/nologo /DWIN32 /D_DEBUG /W3 /Od /bigobj")

    def test_flags_render_false_switch(self) -> None:
        options = self.provider.command_line(
            Tool.COMPILER,
            {"TreatWarningAsError": "false", "MultiProcessorCompilation": "false", "SDLCheck": "true"},
        )

        self.assertEqual(options, "/WX- /sdl")

    def test_include_directories_are_normalized_and_quoted(self) -> None:
        options = self.provider.command_line(
            Tool.COMPILER,
            {"AdditionalIncludeDirectories": "C:\\inc;..\\\\common;C:/Program Files/sdk"},
        )

        self.assertEqual(options, '/IC:/inc /I../common /I"C:/Program Files/sdk"')

    def test_skipped_metadata_is_ignored(self) -> None:
        metadata = {"ObjectFileName": "obj/", "AssemblerListingLocation": "obj/", "WarningLevel": "Level4"}

        options = self.provider.command_line(
            Tool.COMPILER,
            metadata,
            ("ObjectFileName", "AssemblerListingLocation"),
        )

        self.assertEqual(options, "/W4")

    def test_precompiled_header_uses_header_file(self) -> None:
        create = self.provider.command_line(
            Tool.COMPILER,
            {"PrecompiledHeader": "Create", "PrecompiledHeaderFile": "pch.h"},
        )
        use_default = self.provider.command_line(Tool.COMPILER, {"PrecompiledHeader": "Use"})

        self.assertEqual(create, '/Yc"pch.h"')
        self.assertEqual(use_default, '/Yu"stdafx.h"')

    def test_unknown_enum_value_raises(self) -> None:
        with self.assertRaises(ValueError) as ctx:
            self.provider.command_line(Tool.COMPILER, {"WarningLevel": "Level9"})
        self.assertIn("WarningLevel", str(ctx.exception))

    def test_linker_and_resource_tables(self) -> None:
        link = self.provider.command_line(
            Tool.LINKER,
            {
                "OutputFile": "bin/app.exe",
                "AdditionalDependencies": "kernel32.lib;user32.lib",
                "SubSystem": "Console",
                "GenerateDebugInformation": "true",
            },
            ("OutputFile",),
        )
        resource = self.provider.command_line(Tool.RESOURCE_COMPILER, {"PreprocessorDefinitions": "NDEBUG"})

        self.assertEqual(link, "kernel32.lib user32.lib /DEBUG /SUBSYSTEM:CONSOLE")
        self.assertEqual(resource, "/DNDEBUG")


class ToolchainContextTests(unittest.TestCase):
    def _model(self, **properties: str) -> ProjectModel:
        return ProjectModel(path=Path("/p/a.vcxproj"), properties=dict(properties))

    def test_from_project_selects_platform_executable_path(self) -> None:
        model = self._model(
            VCTargetsPath="C:/VC/Targets/",
            VCInstallDir="C:\\VS\\VC\\",
            VC_ExecutablePath_x86_x86="C:/VC/bin/x86",
            VC_ExecutablePath_x64_x64="C:/VC/bin/x64",
            WindowsTargetPlatformVersion="10.0.19041.0",
        )

        x64 = ToolchainContext.from_project(model, "x64")
        win32 = ToolchainContext.from_project(model, "Win32")

        self.assertEqual(x64.vc_exe_path, "C:/VC/bin/x64")
        self.assertEqual(x64.architecture, "x64")
        self.assertEqual(win32.vc_exe_path, "C:/VC/bin/x86")
        self.assertEqual(win32.architecture, "x86")
        self.assertEqual(
            environment_setup_command(x64),
            '%comspec% /c "C:\\VS\\VC\\Auxiliary\\Build\\vcvarsall.bat" x64 10.0.19041.0',
        )

    def test_sdk_version_defaults(self) -> None:
        model = self._model(VCTargetsPathEffective="C:/VC/", VCInstallDir="C:/VC/", VC_ExecutablePath_x86_x86="C:/bin")

        context = ToolchainContext.from_project(model, "Win32")

        self.assertEqual(context.windows_sdk_version, "8.1")

    def test_missing_required_property_raises(self) -> None:
        model = self._model(VCTargetsPath="C:/VC/", VC_ExecutablePath_x86_x86="C:/bin")

        with self.assertRaises(EvaluationError) as ctx:
            ToolchainContext.from_project(model, "Win32")
        self.assertIn("VCInstallDir", str(ctx.exception))


class ToolchainFilesTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _touch(self, relative: str) -> None:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(b"")

    def test_compiler_extra_files_prefers_english_ui(self) -> None:
        for name in ("1033/clui.dll", "1041/clui.dll", "vcruntime140.dll", "mspdb140.dll", "msvcp140.dll"):
            self._touch(name)

        files = compiler_extra_files(self.root)

        self.assertEqual(
            files,
            [
                "c1.dll",
                "c1xx.dll",
                "c2.dll",
                "1033/clui.dll",
                "mspdbsrv.exe",
                "mspdb140.dll",
                "msvcp140.dll",
                "vcruntime140.dll",
            ],
        )

    def test_compiler_extra_files_falls_back_to_localized_ui(self) -> None:
        self._touch("1041/clui.dll")

        self.assertIn("1041/clui.dll", compiler_extra_files(self.root))

    def test_compiler_extra_files_without_directory(self) -> None:
        files = compiler_extra_files(self.root / "missing")

        self.assertEqual(files, ["c1.dll", "c1xx.dll", "c2.dll", "mspdbsrv.exe"])

    def test_resource_compiler_path(self) -> None:
        context = ToolchainContext(
            platform="x64",
            vc_targets_path="",
            vc_install_dir="",
            vc_exe_path="",
            windows_sdk_dir=str(self.root),
            windows_sdk_version="10.0.19041.0",
        )

        self.assertEqual(resource_compiler_path(context), "\\bin\\x64\\rc.exe")
        self._touch("bin/10.0.19041.0/x64/rc.exe")
        self.assertEqual(resource_compiler_path(context), "\\bin\\10.0.19041.0\\x64\\rc.exe")


class ToolchainRegistryTests(unittest.TestCase):
    def test_builtins_and_lookup(self) -> None:
        registry = ToolchainRegistry.with_builtins()

        self.assertIsInstance(registry.get(" MSVC "), MsvcCommandLineProvider)
        self.assertEqual(list(registry.available()), ["msvc"])
        with self.assertRaises(KeyError):
            registry.get("clang")
        with self.assertRaises(ValueError):
            registry.register(" ", MsvcCommandLineProvider())


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
