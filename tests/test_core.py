from __future__ import annotations

from pathlib import Path
import json
import sys
import tempfile
import textwrap
import unittest

from core.command_runner import (
    CommandError,
    CommandLaunchError,
    RecordingCommandRunner,
    SubprocessCommandRunner,
)
from core.config_loader import (
    ConfigDecodeError,
    find_config_file,
    load_config_file,
    loader_for,
    merge_mappings,
    normalize_string_list,
)


class SubprocessCommandRunnerTests(unittest.TestCase):
    def test_streams_lines_with_pid(self) -> None:
        runner = SubprocessCommandRunner()
        received = []

        result = runner.run(
            [sys.executable, "-c", "print('first'); print('second')"],
            check=False,
            on_output=lambda pid, line: received.append((pid, line)),
        )

        self.assertEqual(result.returncode, 0)
        self.assertTrue(result.succeeded)
        self.assertTrue(result.streamed)
        self.assertEqual([line for _, line in received], ["first", "second"])
        self.assertTrue(all(pid == result.pid for pid, _ in received))

    def test_streaming_reports_exit_code(self) -> None:
        runner = SubprocessCommandRunner()

        result = runner.run(
            [sys.executable, "-c", "import sys; print('boom'); sys.exit(3)"],
            check=False,
            on_output=lambda pid, line: None,
        )

        self.assertEqual(result.returncode, 3)
        self.assertFalse(result.succeeded)

    def test_check_raises_command_error(self) -> None:
        runner = SubprocessCommandRunner()

        with self.assertRaises(CommandError) as ctx:
            runner.run([sys.executable, "-c", "import sys; sys.exit(2)"])

        self.assertEqual(ctx.exception.result.returncode, 2)

    def test_missing_executable_raises_launch_error(self) -> None:
        runner = SubprocessCommandRunner()
        missing = "/nonexistent/bffgen-missing-executable"

        with self.assertRaises(CommandLaunchError):
            runner.run([missing], check=False, on_output=lambda pid, line: None)
        with self.assertRaises(CommandLaunchError) as ctx:
            runner.run([missing], check=False)
        self.assertEqual(ctx.exception.command, [missing])


class RecordingCommandRunnerTests(unittest.TestCase):
    def test_records_and_formats_commands(self) -> None:
        runner = RecordingCommandRunner()

        result = runner.run(
            ["sh", "fb.sh", "-config", "a b.bff"],
            cwd=Path("/work/app"),
            note="app",
            on_output=lambda pid, line: None,
        )

        self.assertEqual(result.returncode, 0)
        self.assertTrue(runner.commands[0].streamed)
        self.assertEqual(
            list(runner.iter_formatted()),
            ["[dry-run] app (cwd=/work/app) sh fb.sh -config 'a b.bff'"],
        )


class ConfigLoaderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_loads_toml_json_and_yaml(self) -> None:
        (self.root / "a.toml").write_text("[global]\nunity = true\n", encoding="utf-8")
        (self.root / "b.json").write_text(json.dumps({"global": {"unity": True}}), encoding="utf-8")
        (self.root / "c.yaml").write_text(
            textwrap.dedent(
                """
                global:
                  unity: true
                """
            ).strip(),
            encoding="utf-8",
        )

        for name in ("a.toml", "b.json", "c.yaml"):
            with self.subTest(name=name):
                self.assertEqual(load_config_file(self.root / name), {"global": {"unity": True}})

    def test_rejects_non_mapping_root(self) -> None:
        path = self.root / "list.json"
        path.write_text("[1, 2]", encoding="utf-8")

        with self.assertRaises(TypeError):
            load_config_file(path)

    def test_malformed_documents_raise_decode_error(self) -> None:
        cases = {
            "broken.toml": "[global\n",
            "broken.json": "{\"global\": ",
            "broken.yaml": "global: [unterminated\n",
        }
        for name, text in cases.items():
            with self.subTest(name=name):
                path = self.root / name
                path.write_text(text, encoding="utf-8")
                with self.assertRaises(ConfigDecodeError) as ctx:
                    load_config_file(path)
                self.assertEqual(ctx.exception.path, path)
                self.assertIsInstance(ctx.exception, ValueError)

    def test_unknown_suffix_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            loader_for(self.root / "settings.ini")

    def test_find_config_file(self) -> None:
        self.assertIsNone(find_config_file(self.root, "bffgen"))

        (self.root / "bffgen.toml").write_text("", encoding="utf-8")
        self.assertEqual(find_config_file(self.root, "bffgen"), self.root / "bffgen.toml")

        (self.root / "bffgen.yaml").write_text("{}", encoding="utf-8")
        with self.assertRaises(ValueError):
            find_config_file(self.root, "bffgen")

    def test_merge_mappings_is_deep(self) -> None:
        base = {"properties": {"IntDir": "obj/", "OutDir": "bin/"}, "items": {"ClCompile": ["a.cpp"]}}
        overlay = {"properties": {"IntDir": "obj/x64/"}, "items": {"ClCompile": ["b.cpp"]}}

        merged = merge_mappings(base, overlay)

        self.assertEqual(merged["properties"], {"IntDir": "obj/x64/", "OutDir": "bin/"})
        self.assertEqual(merged["items"], {"ClCompile": ["b.cpp"]})
        self.assertEqual(base["properties"]["IntDir"], "obj/")

    def test_normalize_string_list(self) -> None:
        self.assertEqual(normalize_string_list(None), [])
        self.assertEqual(normalize_string_list(" a "), ["a"])
        self.assertEqual(normalize_string_list(["a", " ", "b"]), ["a", "b"])
        with self.assertRaises(TypeError):
            normalize_string_list([1], field_name="dependencies")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
