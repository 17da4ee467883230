from __future__ import annotations

from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import MagicMock
import io
import tempfile
import textwrap
import unittest

from core.command_runner import RecordingCommandRunner

from bffgen.cli import main
from bffgen.console import Console
from bffgen.generator import GenerationContext, Generator, write_text_atomic
from bffgen.scheduler import ProjectState
from bffgen.scripts import ScriptDialect

TOOLCHAIN_PROPERTIES = """
VCTargetsPath = "C:/VS/MSBuild/VC/"
VCInstallDir = "C:/VS/VC/"
VC_ExecutablePath_x64_x64 = "C:/VS/VC/bin/x64"
WindowsTargetPlatformVersion = "10.0.19041.0"
"""


class WorkspaceMixin:
    def _setup_workspace(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name).resolve()
        self.core = self._write(
            "core/core.vcxproj.toml",
            """
            [properties]
            ConfigurationType = "StaticLibrary"
            IntDir = "obj/"
            {toolchain}

            [item_definitions.ClCompile]
            WarningLevel = "Level3"

            [item_definitions.Lib]
            OutputFile = "bin/core.lib"

            [items]
            ClCompile = ["a.cpp", "b.cpp"]
            """,
        )
        self.app = self._write(
            "app/app.vcxproj.toml",
            """
            [properties]
            ConfigurationType = "Application"
            IntDir = "obj/"
            {toolchain}

            [item_definitions.Link]
            OutputFile = "bin/app.exe"

            [items]
            ClCompile = ["main.cpp"]
            ProjectReference = ["../core/core.vcxproj.toml"]
            """,
        )
        self.solution = self._write(
            "all.sln.toml",
            """
            [[projects]]
            name = "core"
            path = "core/core.vcxproj.toml"
            guid = "{C0}"

            [[projects]]
            name = "app"
            path = "app/app.vcxproj.toml"
            guid = "{A0}"
            dependencies = ["{C0}"]
            """,
        )
        self.core_graph = self.root / "core" / "core.vcxproj.toml_Debug_x64.bff"
        self.app_graph = self.root / "app" / "app.vcxproj.toml_Debug_x64.bff"

    def _write(self, relative: str, text: str, *, toolchain: bool = True) -> Path:
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        body = textwrap.dedent(text).strip().replace("{toolchain}", TOOLCHAIN_PROPERTIES.strip() if toolchain else "")
        path.write_text(body + "\n", encoding="utf-8")
        return path


class GeneratorTests(WorkspaceMixin, unittest.TestCase):
    def setUp(self) -> None:
        self._setup_workspace()
        self.console = MagicMock(spec=Console)
        self.runner = RecordingCommandRunner()

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _generator(self, **overrides) -> Generator:
        options = dict(
            configuration="Debug",
            platform="x64",
            solution=self.solution,
            generate_only=True,
            dialect=ScriptDialect.SH,
        )
        options.update(overrides)
        return Generator(GenerationContext(**options), console=self.console, runner=self.runner)

    def test_generation_is_gated_by_fingerprint(self) -> None:
        first = self._generator().generate()

        self.assertEqual(first.written, [self.core_graph, self.app_graph])
        self.assertEqual(first.failures, {})
        core_text = self.core_graph.read_text(encoding="utf-8")
        self.assertTrue(core_text.startswith(f";{self.core}_x64_Debug_"))
        self.assertIn(f"{self.root.as_posix()}/core/bin/core.lib", self.app_graph.read_text(encoding="utf-8"))

        second = self._generator().generate()
        self.assertEqual(second.written, [])
        self.assertEqual(second.up_to_date, [self.core_graph, self.app_graph])

        forced = self._generator(regenerate=True).generate()
        self.assertEqual(forced.written, [self.core_graph, self.app_graph])
        self.assertEqual(self.core_graph.read_text(encoding="utf-8"), core_text)

        with self.core.open("a", encoding="utf-8") as handle:
            handle.write("#\n")
        changed = self._generator().generate()
        self.assertEqual(changed.written, [self.core_graph])
        self.assertEqual(changed.up_to_date, [self.app_graph])

    def test_single_project_pulls_in_references(self) -> None:
        result = self._generator(solution=None, project=str(self.app)).generate()

        self.assertEqual(set(result.written), {self.core_graph, self.app_graph})

    def test_missing_toolchain_property_fails_only_that_project(self) -> None:
        self._write(
            "app/app.vcxproj.toml",
            """
            [properties]
            ConfigurationType = "Application"
            VCTargetsPath = "C:/VS/MSBuild/VC/"
            """,
            toolchain=False,
        )

        result = self._generator().generate()

        self.assertEqual(result.written, [self.core_graph])
        self.assertIn(self.app, result.failures)
        self.assertIn("VCInstallDir", result.failures[self.app])
        self.assertIn("1 failed.", result.summary_lines()[0])

    def test_run_writes_launcher_and_invokes_executor(self) -> None:
        generation, report = self._generator(generate_only=False, fbuild_args="-dist -cache").run()

        launcher = self.root / "core" / "core_fb.sh"
        self.assertTrue(launcher.is_file())
        self.assertIn('"$@"', launcher.read_text(encoding="utf-8"))
        commands = [record.command for record in self.runner.iter_commands()]
        self.assertEqual(
            commands,
            [
                ["sh", str(launcher), "-config", str(self.core_graph), "-dist", "-cache"],
                ["sh", str(self.root / "app" / "app_fb.sh"), "-config", str(self.app_graph), "-dist", "-cache"],
            ],
        )
        self.assertEqual(generation.evaluated, 2)
        self.assertTrue(report.succeeded)
        self.assertEqual(report.summary_lines(), ["2/2 built."])

    def test_generation_failure_is_reported_as_unbuilt(self) -> None:
        self._write(
            "app/app.vcxproj.toml",
            """
            [properties]
            ConfigurationType = "Application"
            """,
            toolchain=False,
        )

        _, report = self._generator(generate_only=False).run()

        self.assertEqual(report.states[self.app], ProjectState.FAILED)
        self.assertEqual(report.summary_lines(), ["1/2 built.", "Unbuilt projects:", f"\t{self.app}"])

    def test_dry_run_writes_nothing(self) -> None:
        _, report = self._generator(generate_only=False, dry_run=True).run()

        self.assertFalse(self.core_graph.exists())
        self.assertFalse((self.root / "core" / "core_fb.sh").exists())
        self.console.dry.assert_any_call(f"write {self.core_graph}")
        self.assertEqual(len(list(self.runner.iter_commands())), 2)
        self.assertTrue(report.succeeded)

    def _static_library(self, relative: str, source: str) -> Path:
        name = Path(relative).name.split(".", 1)[0]
        return self._write(
            relative,
            f"""
            [properties]
            ConfigurationType = "StaticLibrary"
            IntDir = "obj/"
            {{toolchain}}

            [item_definitions.Lib]
            OutputFile = "bin/{name}.lib"

            [items]
            ClCompile = ["{source}"]
            """,
        )

    def test_solution_dependencies_order_the_build(self) -> None:
        self._static_library("c/c.vcxproj.toml", "c.cpp")
        self._static_library("a/a.vcxproj.toml", "a.cpp")
        self._write(
            "x/x.vcxproj.toml",
            """
            [properties]
            ConfigurationType = "Application"
            IntDir = "obj/"
            {toolchain}

            [item_definitions.Link]
            OutputFile = "bin/x.exe"

            [items]
            ClCompile = ["main.cpp"]
            ProjectReference = ["../a/a.vcxproj.toml"]
            """,
        )
        solution = self._write(
            "order.sln.toml",
            """
            [[projects]]
            path = "x/x.vcxproj.toml"
            guid = "{X}"

            [[projects]]
            path = "c/c.vcxproj.toml"
            guid = "{C}"

            [[projects]]
            path = "a/a.vcxproj.toml"
            guid = "{A}"
            dependencies = ["{C}"]
            """,
        )
        generator = self._generator(solution=solution, generate_only=False)

        generation, report = generator.run()

        order = [record.note for record in self.runner.iter_commands()]
        self.assertLess(order.index("c"), order.index("a"))
        self.assertLess(order.index("a"), order.index("x"))
        self.assertTrue(report.succeeded)
        dependencies = {job.name: job.dependencies for job in generator.jobs(generation)}
        self.assertEqual(dependencies["a"], [self.root / "c" / "c.vcxproj.toml"])
        self.assertEqual(dependencies["x"], [self.root / "a" / "a.vcxproj.toml"])
        a_graph = (self.root / "a" / "a.vcxproj.toml_Debug_x64.bff").read_text(encoding="utf-8")
        x_graph = (self.root / "x" / "x.vcxproj.toml_Debug_x64.bff").read_text(encoding="utf-8")
        self.assertNotIn("c/bin/c.lib", a_graph)
        self.assertIn(f"{self.root.as_posix()}/a/bin/a.lib", x_graph)

    def test_projects_sharing_a_directory_get_their_own_launcher(self) -> None:
        self._static_library("p/one.vcxproj.toml", "one.cpp")
        self._static_library("p/two.vcxproj.toml", "two.cpp")
        solution = self._write(
            "shared.sln.toml",
            """
            [[projects]]
            path = "p/one.vcxproj.toml"

            [[projects]]
            path = "p/two.vcxproj.toml"
            """,
        )

        self._generator(solution=solution, generate_only=False).run()

        launchers = [record.command[1] for record in self.runner.iter_commands()]
        one, two = self.root / "p" / "one_fb.sh", self.root / "p" / "two_fb.sh"
        self.assertEqual(launchers, [str(one), str(two)])
        self.assertIn("one.tlog", one.read_text(encoding="utf-8"))
        self.assertNotIn("two.tlog", one.read_text(encoding="utf-8"))
        self.assertIn("two.tlog", two.read_text(encoding="utf-8"))

    def test_excluded_solution_projects_are_reported_unbuilt(self) -> None:
        solution = self._write(
            "ghost.sln.toml",
            """
            [[projects]]
            name = "core"
            path = "core/core.vcxproj.toml"
            guid = "{C0}"

            [[projects]]
            name = "ghost"
            path = "ghost/ghost.vcxproj.toml"
            guid = "{G0}"
            """,
        )

        _, report = self._generator(solution=solution, generate_only=False).run()

        ghost = self.root / "ghost" / "ghost.vcxproj.toml"
        self.assertEqual(report.states[ghost], ProjectState.SKIPPED)
        self.assertIn("does not exist", report.reasons[ghost])
        self.assertEqual(report.summary_lines(), ["1/2 built.", "Unbuilt projects:", f"\t{ghost}"])

    def test_requires_solution_or_project(self) -> None:
        with self.assertRaises(ValueError):
            self._generator(solution=None).generate()


class WriteTextAtomicTests(unittest.TestCase):
    def test_replaces_file_without_leftovers(self) -> None:
        with tempfile.TemporaryDirectory() as temp:
            target = Path(temp) / "graph.bff"
            target.write_text("old", encoding="utf-8")

            write_text_atomic(target, "a\nb\n", newline="\r\n")

            self.assertEqual(target.read_bytes(), b"a\r\nb\r\n")
            self.assertEqual([path.name for path in Path(temp).iterdir()], ["graph.bff"])


class CliTests(WorkspaceMixin, unittest.TestCase):
    def setUp(self) -> None:
        self._setup_workspace()
        self.settings = self.root / "settings.toml"
        self.settings.write_text('[global]\nplatform = "x64"\nlog_level = "error"\n', encoding="utf-8")

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _main(self, *args: str) -> tuple[int, str]:
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            code = main(["--settings", str(self.settings), *args])
        return code, buffer.getvalue()

    def test_generate_only(self) -> None:
        code, output = self._main("-s", str(self.solution), "-g")

        self.assertEqual(code, 0)
        self.assertIn("2 build graph(s) written, 0 up to date, 0 failed.", output)
        self.assertTrue(self.core_graph.is_file())

    def test_generate_only_failure_exit_code(self) -> None:
        self._write("app/app.vcxproj.toml", '[properties]\nConfigurationType = "Application"\n', toolchain=False)

        code, _ = self._main("-s", str(self.solution), "-g")

        self.assertEqual(code, 1)

    def test_dry_run_prints_commands(self) -> None:
        code, output = self._main("-s", str(self.solution), "--dry-run")

        self.assertEqual(code, 0)
        self.assertIn("[dry-run] core", output)
        self.assertIn("2/2 built.", output)
        self.assertFalse(self.core_graph.exists())

    def test_invalid_settings(self) -> None:
        self.settings.write_text("[global]\nthreads = 4\n", encoding="utf-8")

        code, output = self._main("-s", str(self.solution), "-g")

        self.assertEqual(code, 2)
        self.assertTrue(output.startswith("Error:"))

    def test_missing_solution(self) -> None:
        code, output = self._main("-s", str(self.root / "missing.sln.toml"), "-g")

        self.assertEqual(code, 2)
        self.assertIn("Error:", output)

    def test_invalid_max_process(self) -> None:
        code, output = self._main("-s", str(self.solution), "-m", "0")

        self.assertEqual(code, 2)
        self.assertIn("--maxprocess", output)

    def test_negative_retries(self) -> None:
        code, output = self._main("-s", str(self.solution), "--retries", "-1")

        self.assertEqual(code, 2)
        self.assertIn("--retries", output)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
