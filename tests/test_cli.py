import functools
import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from typer.testing import CliRunner

from apkdisguise import __version__
from apkdisguise.cli.main import app
from apkdisguise.core.adb import DeviceBridge
from apkdisguise.core.pipeline import PipelineExecutor
from apkdisguise.models.apk import ToolPaths
from tests.fakes import FakeRunner, make_apk, make_toolchain

PACKAGES = {
    "shell pm list packages -f": (
        "package:/system/app/Chrome/Chrome.apk=com.android.chrome\n"
        "package:/data/app/com.example.notes-1/base.apk=com.example.notes\n"
        "package:/data/app/com.nlscan.demo-1/base.apk=com.nlscan.demo\n"
    ),
    "shell pm list packages -s": "package:com.android.chrome\n",
    "shell pm uninstall com.example.notes": "Success\n",
    "shell pm uninstall --user 0 com.android.chrome": "Success\n",
}


class CliTestCase(unittest.TestCase):
    def setUp(self):
        self.cli = CliRunner()
        self.fake = FakeRunner(adb=PACKAGES)
        self.bridge = DeviceBridge(runner=self.fake)
        for module in ("device", "apps", "prefixes"):
            patcher = mock.patch(f"apkdisguise.cli.{module}.make_bridge", return_value=self.bridge)
            patcher.start()
            self.addCleanup(patcher.stop)

    def invoke(self, *args, **kwargs):
        return self.cli.invoke(app, list(args), **kwargs)

    def uninstall_calls(self):
        return [c for c in self.fake.calls if "uninstall" in c]


class RootCommandTests(CliTestCase):
    def test_version(self):
        result = self.invoke("--version")

        self.assertEqual(result.exit_code, 0)
        self.assertIn(__version__, result.output)


class DeviceCommandTests(CliTestCase):
    def test_list_json(self):
        result = self.invoke("device", "list", "--json")

        self.assertEqual(result.exit_code, 0, result.output)
        devices = json.loads(result.output)
        self.assertEqual([d["id"] for d in devices], ["emulator-5554", "R58M12345"])
        self.assertEqual([d["available"] for d in devices], [True, False])


class AppsCommandTests(CliTestCase):
    def test_list_user_only_json(self):
        result = self.invoke("apps", "list", "--user-only", "--json")

        self.assertEqual(result.exit_code, 0, result.output)
        names = [a["package_name"] for a in json.loads(result.output)]
        self.assertEqual(names, ["com.nlscan.demo", "com.example.notes"])

    def test_conflicting_filters(self):
        result = self.invoke("apps", "list", "--user-only", "--system-only")

        self.assertEqual(result.exit_code, 1)

    def test_invalid_name_is_refused_before_adb(self):
        result = self.invoke("apps", "uninstall", "not a package")

        self.assertEqual(result.exit_code, 1)
        self.assertEqual(self.fake.calls, [])

    def test_user_app_single_confirmation(self):
        result = self.invoke("apps", "uninstall", "com.example.notes", input="y\n")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(len(self.uninstall_calls()), 1)

    def test_declined_confirmation(self):
        result = self.invoke("apps", "uninstall", "com.example.notes", input="n\n")

        self.assertEqual(result.exit_code, 1)
        self.assertEqual(self.uninstall_calls(), [])

    def test_system_app_needs_typed_name(self):
        result = self.invoke(
            "apps", "uninstall", "com.android.chrome", input="y\ncom.android.chrome\ny\n"
        )

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(self.uninstall_calls()[0][-3:], ["--user", "0", "com.android.chrome"])

    def test_system_app_wrong_name_aborts(self):
        result = self.invoke("apps", "uninstall", "com.android.chrome", input="y\nchrome\n")

        self.assertEqual(result.exit_code, 1)
        self.assertEqual(self.uninstall_calls(), [])

    def test_yes_does_not_skip_system_confirmation(self):
        result = self.invoke("apps", "uninstall", "com.android.chrome", "--yes", input="n\n")

        self.assertEqual(result.exit_code, 1)
        self.assertEqual(self.uninstall_calls(), [])

    def test_not_installed(self):
        result = self.invoke("apps", "uninstall", "com.missing.app", "--yes")

        self.assertEqual(result.exit_code, 1)
        self.assertEqual(self.uninstall_calls(), [])


class PrefixesCommandTests(CliTestCase):
    def test_scan_json(self):
        result = self.invoke("prefixes", "scan", "--json")

        self.assertEqual(result.exit_code, 0, result.output)
        candidates = json.loads(result.output)
        self.assertEqual(
            [c["prefix"] for c in candidates],
            ["cn.chinapost", "com.nlscan", "com.android", "com.example"],
        )
        self.assertEqual(candidates[0]["origin"], "recommended")

    def test_scan_limit(self):
        result = self.invoke("prefixes", "scan", "--json", "-n", "1")

        self.assertEqual(len(json.loads(result.output)), 1)


class ToolsCommandTests(unittest.TestCase):
    def test_show_reports_problems(self):
        with mock.patch("apkdisguise.cli.tools.ToolchainResolver") as resolver:
            resolver.return_value.resolve.return_value = ToolPaths()
            resolver.return_value.tools_dir = Path("/nowhere")
            result = CliRunner().invoke(app, ["tools", "show", "--json"])

        self.assertEqual(result.exit_code, 1)
        problems = json.loads(result.output)["problems"]
        self.assertIn("decompiler", problems)
        self.assertIn("keystore", problems)


class RunCommandTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.paths = make_toolchain(self.root)
        self.source = make_apk(self.root / "sample.apk")
        self.fake = FakeRunner()

        patches = [
            mock.patch("apkdisguise.cli.run.ToolchainResolver"),
            mock.patch(
                "apkdisguise.cli.run.PipelineExecutor",
                functools.partial(PipelineExecutor, runner=self.fake),
            ),
            mock.patch("apkdisguise.core.pipeline.read_package_name", return_value=None),
        ]
        resolver = patches[0].start()
        resolver.return_value.resolve.return_value = self.paths
        for patcher in patches[1:]:
            patcher.start()
        for patcher in patches:
            self.addCleanup(patcher.stop)

    def tearDown(self):
        self._tmp.cleanup()

    def test_run_json(self):
        result = CliRunner().invoke(app, ["run", str(self.source), "-p", "cn.chinapost", "--json"])

        self.assertEqual(result.exit_code, 0, result.output)
        payload = json.loads(result.output)
        self.assertTrue(payload["success"])
        self.assertEqual(payload["package_name"], "cn.chinapost.sample")
        self.assertEqual(
            payload["stages_completed"],
            ["Decompiled", "ManifestPatched", "Rebuilt", "Aligned", "Signed"],
        )
        self.assertTrue((self.root / "sample_disguised.apk").is_file())

    def test_run_failure_exit_code(self):
        self.fake.fail = {"sign": 1}

        result = CliRunner().invoke(app, ["run", str(self.source), "-p", "cn.chinapost"])

        self.assertEqual(result.exit_code, 1)
        self.assertIn("Signed", result.output)


if __name__ == "__main__":
    unittest.main()
