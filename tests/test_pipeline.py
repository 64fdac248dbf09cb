import tempfile
import unittest
import xml.etree.ElementTree as ET
from pathlib import Path
from unittest import mock

from apkdisguise.core import pipeline
from apkdisguise.core.pipeline import PipelineExecutor, default_output_path, process_apk
from apkdisguise.exceptions import PipelineBusyError
from apkdisguise.models.apk import SigningConfig
from apkdisguise.models.pipeline import DisguiseRequest, Stage
from tests.fakes import FakeRunner, make_apk, make_toolchain

SIGNING_STAGES = [
    Stage.DECOMPILED,
    Stage.MANIFEST_PATCHED,
    Stage.REBUILT,
    Stage.ALIGNED,
    Stage.SIGNED,
]


class PipelineTestCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.root = Path(self._tmp.name)
        self.paths = make_toolchain(self.root)
        self.source = make_apk(self.root / "sample.apk")
        self.work_root = self.root / "work"
        self.work_root.mkdir()

        patcher = mock.patch(
            "apkdisguise.core.pipeline.read_package_name", return_value="com.vendor.scanner"
        )
        self.read_package_name = patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        self._tmp.cleanup()

    def executor(self, runner, **kwargs):
        return PipelineExecutor(self.paths, runner=runner, work_root=self.work_root, **kwargs)


class PipelineSuccessTests(PipelineTestCase):
    def test_end_to_end_derives_name_and_signs(self):
        runner = FakeRunner()

        result = self.executor(runner).run(self.source, "cn.chinapost")

        self.assertTrue(result.success, result.message)
        self.assertEqual(result.package_name, "cn.chinapost.sample")
        self.assertEqual(result.stages_completed, Stage.ordered())
        self.assertEqual(result.output_artifact_path, default_output_path(self.source.resolve()))
        self.assertTrue(result.output_artifact_path.read_bytes().endswith(b"signed"))
        self.assertIsNone(result.failed_stage)

    def test_success_removes_working_directory(self):
        result = self.executor(FakeRunner()).run(self.source, "cn.chinapost")

        self.assertTrue(result.success)
        self.assertIsNone(result.working_directory)
        self.assertEqual(list(self.work_root.iterdir()), [])

    def test_align_runs_before_sign(self):
        runner = FakeRunner()

        self.executor(runner).run(self.source, "cn.chinapost")

        self.assertEqual(runner.kinds, ["decompile", "build", "align", "sign"])
        self.assertLess(runner.kinds.index("align"), runner.kinds.index("sign"))

    def test_tool_commands(self):
        runner = FakeRunner()

        self.executor(runner, signing=SigningConfig(key_alias="k", keystore_pass="s", key_pass="p")).run(
            self.source, "cn.chinapost"
        )

        decompile, build, align, sign = runner.calls
        self.assertEqual(decompile[1:3], ["d", str(self.source.resolve())])
        self.assertIn("-s", decompile)
        self.assertEqual(build[1], "b")
        self.assertEqual(align[1:4], ["-f", "-v", "4"])
        self.assertEqual(sign[1], "sign")
        self.assertEqual(sign[sign.index("--v1-signing-enabled") + 1], "true")
        self.assertEqual(sign[sign.index("--v2-signing-enabled") + 1], "false")
        self.assertEqual(sign[sign.index("--ks") + 1], self.paths.keystore_path)
        self.assertEqual(sign[sign.index("--ks-key-alias") + 1], "k")
        self.assertEqual(sign[sign.index("--ks-pass") + 1], "pass:s")

    def test_reports_redact_passwords(self):
        result = self.executor(FakeRunner()).run(self.source, "cn.chinapost")

        sign_report = next(r for r in result.reports if r.stage == Stage.SIGNED)
        self.assertIn("pass:***", sign_report.command)
        self.assertNotIn("pass:123456", sign_report.command)

    def test_every_stage_has_a_report(self):
        result = self.executor(FakeRunner()).run(self.source, "cn.chinapost")

        self.assertEqual([r.stage for r in result.reports], SIGNING_STAGES)
        self.assertIn("decompile ok", result.reports[0].stdout)

    def test_manifest_package_is_identical_across_runs(self):
        runner = FakeRunner()
        executor = self.executor(runner)

        executor.run(self.source, "cn.chinapost", output_path=self.root / "a.apk")
        executor.run(self.source, "cn.chinapost", output_path=self.root / "b.apk")

        first, second = runner.built_manifests
        self.assertEqual(first, second)
        self.assertEqual(ET.fromstring(first).get("package"), "cn.chinapost.sample")

    def test_custom_suffix_and_output_path(self):
        output = self.root / "out" / "final.apk"

        result = self.executor(FakeRunner()).run(
            self.source, "com.nlscan", "Scanner", output_path=output
        )

        self.assertTrue(result.success)
        self.assertEqual(result.package_name, "com.nlscan.scanner")
        self.assertTrue(output.is_file())

    def test_progress_callback_sees_each_stage(self):
        seen = []

        self.executor(FakeRunner(), progress=lambda stage, report: seen.append(stage)).run(
            self.source, "cn.chinapost"
        )

        self.assertEqual(seen, SIGNING_STAGES)


class PipelineInstallTests(PipelineTestCase):
    def test_install_with_device_adds_installed_stage(self):
        runner = FakeRunner()

        result = self.executor(runner).run(
            self.source, "cn.chinapost", install_after=True, device_id="emulator-5554"
        )

        self.assertTrue(result.success, result.message)
        self.assertEqual(result.stages_completed, SIGNING_STAGES + [Stage.INSTALLED])
        self.assertEqual(result.stages_completed, Stage.ordered(install=True))
        install = runner.calls[-1]
        self.assertEqual(install[:3], [self.paths.shell_path, "-s", "emulator-5554"])
        self.assertIn("-r", install)
        self.assertIn("-t", install)
        self.assertEqual(install[-1], str(result.output_artifact_path))

    def test_install_without_device_is_skipped(self):
        runner = FakeRunner()

        result = self.executor(runner).run(self.source, "cn.chinapost", install_after=True)

        self.assertTrue(result.success)
        self.assertEqual(result.stages_completed, SIGNING_STAGES)
        self.assertNotIn("adb", runner.kinds)

    def test_install_failure_keeps_signed_output(self):
        runner = FakeRunner(adb={"install": "Failure [INSTALL_FAILED_UPDATE_INCOMPATIBLE]"})

        result = self.executor(runner).run(
            self.source, "cn.chinapost", install_after=True, device_id="emulator-5554"
        )

        self.assertFalse(result.success)
        self.assertEqual(result.failed_stage, Stage.INSTALLED)
        self.assertEqual(result.error_type, "InstallError")
        self.assertEqual(result.stages_completed, SIGNING_STAGES)
        self.assertTrue(result.output_artifact_path.is_file())

    def test_install_to_unauthorized_device_fails(self):
        result = self.executor(FakeRunner()).run(
            self.source, "cn.chinapost", install_after=True, device_id="R58M12345"
        )

        self.assertFalse(result.success)
        self.assertEqual(result.failed_stage, Stage.INSTALLED)
        self.assertEqual(result.error_type, "DeviceUnauthorizedError")


class PipelineFailureTests(PipelineTestCase):
    def test_decompile_failure(self):
        runner = FakeRunner(fail={"decompile": 1})

        result = self.executor(runner).run(self.source, "cn.chinapost")

        self.assertFalse(result.success)
        self.assertEqual(result.failed_stage, Stage.DECOMPILED)
        self.assertEqual(result.stages_completed, [])
        self.assertEqual(result.error_type, "ToolInvocationError")
        self.assertEqual(runner.kinds, ["decompile"])
        self.assertIn("decompile exploded", result.reports[-1].stderr)

    def test_failure_keeps_working_directory(self):
        result = self.executor(FakeRunner(fail={"build": 1})).run(self.source, "cn.chinapost")

        self.assertEqual(result.failed_stage, Stage.REBUILT)
        self.assertIsNotNone(result.working_directory)
        self.assertTrue((result.working_directory / "decoded" / "AndroidManifest.xml").is_file())

    def test_failure_cleanup_when_requested(self):
        result = self.executor(FakeRunner(fail={"align": 1})).run(
            self.source, "cn.chinapost", cleanup_on_failure=True
        )

        self.assertEqual(result.failed_stage, Stage.ALIGNED)
        self.assertIsNone(result.working_directory)
        self.assertEqual(list(self.work_root.iterdir()), [])

    def test_missing_manifest_is_corrupt_artifact(self):
        result = self.executor(FakeRunner(manifest=None)).run(self.source, "cn.chinapost")

        self.assertEqual(result.failed_stage, Stage.DECOMPILED)
        self.assertEqual(result.error_type, "CorruptArtifactError")

    def test_manifest_without_package_attribute(self):
        runner = FakeRunner(manifest="<manifest><application/></manifest>")

        result = self.executor(runner).run(self.source, "cn.chinapost")

        self.assertEqual(result.failed_stage, Stage.MANIFEST_PATCHED)
        self.assertEqual(result.error_type, "ManifestMalformedError")
        self.assertEqual(result.stages_completed, [Stage.DECOMPILED])
        self.assertEqual(runner.kinds, ["decompile"])

    def test_signing_failure(self):
        runner = FakeRunner(fail={"sign": 2})

        result = self.executor(runner).run(self.source, "cn.chinapost")

        self.assertEqual(result.failed_stage, Stage.SIGNED)
        self.assertEqual(result.error_type, "SigningError")
        self.assertEqual(result.stages_completed, SIGNING_STAGES[:4])
        self.assertIsNone(result.output_artifact_path)

    def test_rebuild_without_output(self):
        result = self.executor(FakeRunner(skip_output={"build"})).run(self.source, "cn.chinapost")

        self.assertEqual(result.failed_stage, Stage.REBUILT)
        self.assertEqual(result.error_type, "ToolInvocationError")


class PipelinePreflightTests(PipelineTestCase):
    def test_missing_tool_is_configuration_error(self):
        self.paths.aligner_path = ""
        runner = FakeRunner()

        result = self.executor(runner).run(self.source, "cn.chinapost")

        self.assertFalse(result.success)
        self.assertEqual(result.error_type, "ToolNotFoundError")
        self.assertIsNone(result.failed_stage)
        self.assertEqual(runner.calls, [])

    def test_missing_keystore_is_configuration_error(self):
        self.paths.keystore_path = str(self.root / "nope.jks")
        runner = FakeRunner()

        result = self.executor(runner).run(self.source, "cn.chinapost")

        self.assertFalse(result.success)
        self.assertIn("keystore", result.message)
        self.assertEqual(runner.calls, [])

    def test_invalid_prefix_spawns_nothing(self):
        runner = FakeRunner()

        result = self.executor(runner).run(self.source, "CN.ChinaPost")

        self.assertEqual(result.error_type, "InvalidIdentifierError")
        self.assertEqual(runner.calls, [])

    def test_rename_to_original_name_is_rejected(self):
        self.read_package_name.return_value = "cn.chinapost.sample"
        runner = FakeRunner()

        result = self.executor(runner).run(self.source, "cn.chinapost")

        self.assertEqual(result.error_type, "InvalidIdentifierError")
        self.assertEqual(runner.calls, [])

    def test_rename_to_original_caught_from_manifest(self):
        self.read_package_name.return_value = None
        runner = FakeRunner()

        result = self.executor(runner).run(self.source, "com.vendor", "scanner")

        self.assertEqual(result.failed_stage, Stage.MANIFEST_PATCHED)
        self.assertEqual(result.error_type, "InvalidIdentifierError")

    def test_not_a_zip_is_rejected(self):
        bogus = self.root / "bogus.apk"
        bogus.write_text("hello")

        result = self.executor(FakeRunner()).run(bogus, "cn.chinapost")

        self.assertEqual(result.error_type, "ValidationError")


class PipelineConcurrencyTests(PipelineTestCase):
    def test_second_run_while_active_is_rejected(self):
        executor = self.executor(FakeRunner())
        executor._active.acquire()
        try:
            with self.assertRaises(PipelineBusyError):
                executor.run(self.source, "cn.chinapost")
        finally:
            executor._active.release()

    def test_cancel_during_align_stops_before_sign(self):
        holder = {}

        def cancel_on_align(kind, command):
            if kind == "align":
                holder["executor"].cancel()

        runner = FakeRunner(on_call=cancel_on_align)
        executor = self.executor(runner)
        holder["executor"] = executor

        result = executor.run(self.source, "cn.chinapost")

        self.assertFalse(result.success)
        self.assertEqual(result.failed_stage, Stage.ALIGNED)
        self.assertEqual(result.error_type, "RunCancelledError")
        self.assertNotIn("sign", runner.kinds)
        self.assertIsNone(result.output_artifact_path)
        self.assertIsNone(result.working_directory)
        self.assertEqual(list(self.work_root.iterdir()), [])
        self.assertFalse(executor.active)

    def test_cancel_after_signing_tool_exits_writes_no_output(self):
        executor = self.executor(FakeRunner())
        execute = executor._execute

        def execute_then_cancel(run, command, **kwargs):
            report = execute(run, command, **kwargs)
            if report.stage == Stage.SIGNED:
                executor.cancel()
            return report

        output = self.root / "final.apk"
        with mock.patch.object(executor, "_execute", side_effect=execute_then_cancel):
            result = executor.run(self.source, "cn.chinapost", output_path=output)

        self.assertFalse(result.success)
        self.assertEqual(result.failed_stage, Stage.SIGNED)
        self.assertEqual(result.error_type, "RunCancelledError")
        self.assertEqual(result.stages_completed, SIGNING_STAGES[:-1])
        self.assertFalse(output.exists())
        self.assertIsNone(result.output_artifact_path)


class ProcessApkTests(PipelineTestCase):
    def test_request_entry_point(self):
        request = DisguiseRequest(
            source_artifact_path=self.source,
            prefix="cn.chinapost",
            tool_paths=self.paths,
        )

        with mock.patch("apkdisguise.core.pipeline.tempfile.mkdtemp") as mkdtemp:
            work = self.work_root / "run"
            work.mkdir()
            mkdtemp.return_value = str(work)
            result = process_apk(request, runner=FakeRunner())

        self.assertTrue(result.success, result.message)
        self.assertEqual(result.package_name, "cn.chinapost.sample")
        self.assertFalse(work.exists())

    def test_concurrent_request_is_rejected(self):
        request = DisguiseRequest(
            source_artifact_path=self.source,
            prefix="cn.chinapost",
            tool_paths=self.paths,
        )
        runner = FakeRunner()

        pipeline._ENTRY_LOCK.acquire()
        try:
            with self.assertRaises(PipelineBusyError):
                process_apk(request, runner=runner)
        finally:
            pipeline._ENTRY_LOCK.release()

        self.assertEqual(runner.calls, [])
        self.assertFalse(pipeline._ENTRY_LOCK.locked())


if __name__ == "__main__":
    unittest.main()
