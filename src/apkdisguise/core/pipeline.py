"""The repackaging pipeline: decompile, patch, rebuild, align, sign, install."""

import logging
import shutil
import subprocess
import tempfile
import threading
import time
from collections.abc import Callable
from pathlib import Path

from apkdisguise.core.adb import DeviceBridge
from apkdisguise.core.identifier import PackageIdentifierPolicy
from apkdisguise.core.manifest import MANIFEST_NAME, ManifestPatcher
from apkdisguise.core.toolchain import require_toolchain, tool_command
from apkdisguise.exceptions import (
    ConfigurationError,
    CorruptArtifactError,
    DisguiseError,
    PipelineBusyError,
    ProcessError,
    RunCancelledError,
    SigningError,
    ToolInvocationError,
    ValidationError,
)
from apkdisguise.models.apk import PackageIdentifier, SigningConfig, ToolPaths
from apkdisguise.models.pipeline import (
    DisguiseRequest,
    DisguiseResult,
    PipelineRun,
    Stage,
    StageReport,
)
from apkdisguise.utils.apk import read_package_name, validate_apk_path
from apkdisguise.utils.process import ToolRunner, run_tool

logger = logging.getLogger(__name__)

# zipalign boundary in bytes
ALIGNMENT = "4"

WORKDIR_PREFIX = "apkdisguise-"
OUTPUT_SUFFIX = "_disguised"

# Shared by every process_apk call in the process
_ENTRY_LOCK = threading.Lock()

ProgressCallback = Callable[[Stage, StageReport], None]


def _redact(command: list[str]) -> list[str]:
    return ["pass:***" if arg.startswith("pass:") else arg for arg in command]


def default_output_path(source: Path) -> Path:
    """``<source dir>/<stem>_disguised.apk``."""
    return source.parent / f"{source.stem}{OUTPUT_SUFFIX}.apk"


class PipelineExecutor:
    """Runs the stages strictly in order over one APK at a time.

    Every external tool call blocks until the process exits. A failing stage
    ends the run; nothing is retried. Stage outputs live in a fresh working
    directory which is removed on success and kept on failure, except after
    cancel().
    """

    def __init__(
        self,
        tool_paths: ToolPaths,
        signing: SigningConfig | None = None,
        bridge: DeviceBridge | None = None,
        policy: PackageIdentifierPolicy | None = None,
        manifest_patcher: ManifestPatcher | None = None,
        runner: ToolRunner = run_tool,
        work_root: Path | None = None,
        timeout: float | None = None,
        progress: ProgressCallback | None = None,
    ):
        """Initialize executor.

        Args:
            tool_paths: Resolved toolchain.
            signing: Keystore alias and passwords.
            bridge: Device bridge for the install stage. Built from
                tool_paths.shell_path when needed and not given.
            policy: Package naming rules.
            manifest_patcher: Manifest editor.
            runner: Process runner, replaceable in tests.
            work_root: Parent of per-run working directories (system temp
                directory by default).
            timeout: Optional per-tool timeout in seconds.
            progress: Called after every completed stage.
        """
        self.tool_paths = tool_paths
        self.signing = signing or SigningConfig()
        self.bridge = bridge
        self.policy = policy or PackageIdentifierPolicy()
        self.manifest_patcher = manifest_patcher or ManifestPatcher()
        self.runner = runner
        self.work_root = work_root
        self.timeout = timeout
        self.progress = progress

        self._active = threading.Lock()
        self._cancelled = threading.Event()
        self._process: subprocess.Popen | None = None
        self._stage: Stage | None = None

    @property
    def active(self) -> bool:
        """Whether a run is in progress."""
        return self._active.locked()

    def cancel(self) -> None:
        """Abandon the active run, terminating the running tool."""
        if not self.active:
            return
        logger.warning("cancelling run during %s", self._stage or "preflight")
        self._cancelled.set()
        process = self._process
        if process is not None and process.poll() is None:
            process.terminate()

    def _track(self, process: subprocess.Popen) -> None:
        self._process = process
        if self._cancelled.is_set():
            process.terminate()

    def _check_cancelled(self, stage: Stage, output: str = "") -> None:
        if self._cancelled.is_set():
            raise RunCancelledError(stage, f"Run cancelled during {stage}", output)

    def _execute(
        self,
        run: PipelineRun,
        command: list[str],
        error_cls: type[ToolInvocationError] = ToolInvocationError,
    ) -> StageReport:
        """Run one tool for the current stage and record its report."""
        stage = self._stage
        self._check_cancelled(stage)

        logger.debug("%s: %s", stage, " ".join(_redact(command)))
        started = time.monotonic()
        try:
            result = self.runner(
                command, check=False, timeout=self.timeout, on_start=self._track
            )
        except ProcessError as e:
            raise error_cls(stage, f"{stage}: could not run {command[0]}: {e.stderr}", e.stderr) from e
        finally:
            self._process = None

        report = StageReport(
            stage=stage,
            command=_redact(command),
            exit_code=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            duration=time.monotonic() - started,
        )
        run.reports.append(report)
        if report.output:
            logger.debug("%s output:\n%s", stage, report.output)

        self._check_cancelled(stage, report.output)
        if not result.success:
            raise error_cls(
                stage,
                f"{stage}: {Path(command[0]).name} exited with code {result.returncode}",
                report.output,
            )
        return report

    def _begin(self, stage: Stage) -> None:
        self._stage = stage
        logger.info("stage %s started", stage)

    def _finish(self, run: PipelineRun, report: StageReport) -> None:
        run.complete(report.stage)
        logger.info("stage %s completed", report.stage)
        if self.progress is not None:
            self.progress(report.stage, report)

    def _decompile(self, run: PipelineRun) -> None:
        self._begin(Stage.DECOMPILED)
        decoded = run.working_directory / "decoded"
        cmd = tool_command(self.tool_paths.decompiler_path, self.tool_paths.java_path) + [
            "d",
            str(run.source_artifact_path),
            "-o",
            str(decoded),
            "-f",
            "-s",
        ]
        report = self._execute(run, cmd)

        if not (decoded / MANIFEST_NAME).is_file():
            raise CorruptArtifactError(
                Stage.DECOMPILED,
                f"Decompile produced no {MANIFEST_NAME} in {decoded}",
                report.output,
            )
        self._finish(run, report)

    def _patch_manifest(self, run: PipelineRun) -> None:
        self._begin(Stage.MANIFEST_PATCHED)
        manifest = run.working_directory / "decoded" / MANIFEST_NAME
        started = time.monotonic()

        original = self.manifest_patcher.read_package(manifest)
        run.original_identifier = original
        self.policy.validate(run.target_identifier, original=original)
        result = self.manifest_patcher.patch(manifest, run.target_identifier)

        summary = f"package: {result.original_package} -> {result.new_package}"
        if result.injected_uses_sdk:
            summary += f"\nuses-sdk: injected minSdkVersion={self.manifest_patcher.min_sdk}"
        if result.expanded_names:
            summary += f"\nqualified {result.expanded_names} relative component name(s)"

        report = StageReport(
            stage=Stage.MANIFEST_PATCHED,
            exit_code=0,
            stdout=summary,
            duration=time.monotonic() - started,
        )
        run.reports.append(report)
        self._finish(run, report)

    def _rebuild(self, run: PipelineRun) -> Path:
        self._begin(Stage.REBUILT)
        rebuilt = run.working_directory / "rebuilt.apk"
        cmd = tool_command(self.tool_paths.decompiler_path, self.tool_paths.java_path) + [
            "b",
            str(run.working_directory / "decoded"),
            "-o",
            str(rebuilt),
        ]
        report = self._execute(run, cmd)

        if not rebuilt.is_file():
            raise ToolInvocationError(
                Stage.REBUILT, f"Build completed but APK not found: {rebuilt}", report.output
            )
        self._finish(run, report)
        return rebuilt

    def _align(self, run: PipelineRun, rebuilt: Path) -> Path:
        self._begin(Stage.ALIGNED)
        aligned = run.working_directory / "aligned.apk"
        # Must precede signing: realigning rewrites offsets a v1 signature covers
        cmd = tool_command(self.tool_paths.aligner_path) + [
            "-f",
            "-v",
            ALIGNMENT,
            str(rebuilt),
            str(aligned),
        ]
        report = self._execute(run, cmd)

        if not aligned.is_file():
            raise ToolInvocationError(
                Stage.ALIGNED, f"Alignment completed but APK not found: {aligned}", report.output
            )
        self._finish(run, report)
        return aligned

    def _sign(self, run: PipelineRun, aligned: Path, output_path: Path) -> Path:
        self._begin(Stage.SIGNED)
        signed = run.working_directory / "signed.apk"
        cmd = tool_command(self.tool_paths.signer_path, self.tool_paths.java_path) + [
            "sign",
            "--ks",
            self.tool_paths.keystore_path,
            "--ks-key-alias",
            self.signing.key_alias,
            "--ks-pass",
            f"pass:{self.signing.keystore_pass}",
            "--key-pass",
            f"pass:{self.signing.key_pass}",
            "--v1-signing-enabled",
            "true",
            "--v2-signing-enabled",
            "true" if self.signing.v2_enabled else "false",
            "--out",
            str(signed),
            str(aligned),
        ]
        report = self._execute(run, cmd, error_cls=SigningError)

        if not signed.is_file():
            raise SigningError(
                Stage.SIGNED, f"Signing completed but APK not found: {signed}", report.output
            )

        self._check_cancelled(Stage.SIGNED, report.output)
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(signed, output_path)
        except OSError as e:
            raise ConfigurationError(f"Cannot write output APK {output_path}: {e}") from e

        run.final_artifact_path = output_path
        self._finish(run, report)
        return output_path

    def _install(self, run: PipelineRun, device_id: str) -> None:
        self._begin(Stage.INSTALLED)
        self._check_cancelled(Stage.INSTALLED)
        bridge = self.bridge or DeviceBridge(
            adb_path=self.tool_paths.shell_path, runner=self.runner, timeout=self.timeout
        )
        started = time.monotonic()
        result = bridge.install(device_id, run.final_artifact_path)

        report = StageReport(
            stage=Stage.INSTALLED,
            command=result.command,
            exit_code=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            duration=time.monotonic() - started,
        )
        run.reports.append(report)
        self._finish(run, report)

    def _preflight(
        self,
        source: Path,
        prefix: str,
        custom_suffix: str | None,
        output_path: Path,
        install: bool,
    ) -> PackageIdentifier:
        """Checks that spawn no process."""
        validate_apk_path(source, require_zip_header=True, error_cls=ValidationError)

        if output_path.resolve() == source.resolve():
            raise ValidationError(f"Output path would overwrite the source APK: {source}")

        identifier = self.policy.derive(prefix, source.name, custom_suffix)
        self.policy.validate(identifier, original=read_package_name(source))

        require_toolchain(self.tool_paths, install=install)
        return identifier

    def run(
        self,
        source: Path,
        prefix: str,
        custom_suffix: str | None = None,
        *,
        output_path: Path | None = None,
        install_after: bool = False,
        device_id: str | None = None,
        cleanup_on_failure: bool = False,
    ) -> DisguiseResult:
        """Repackage one APK.

        Args:
            source: APK to repackage.
            prefix: Trusted package prefix.
            custom_suffix: Explicit suffix; derived from the file name if None.
            output_path: Where the signed APK goes.
            install_after: Install the result when device_id is given.
            device_id: Target device serial for the install stage.
            cleanup_on_failure: Remove the working directory on failure too.

        Returns:
            DisguiseResult. Failures are reported, not raised.

        Raises:
            PipelineBusyError: If this executor is already running.
        """
        if not self._active.acquire(blocking=False):
            raise PipelineBusyError("A pipeline run is already active")

        try:
            self._cancelled.clear()
            self._stage = None
            if install_after and not device_id:
                logger.warning("install requested without a device, skipping install stage")
            return self._run(
                source.resolve(),
                prefix,
                custom_suffix,
                output_path,
                install_after and bool(device_id),
                device_id,
                cleanup_on_failure,
            )
        finally:
            self._stage = None
            self._active.release()

    def _run(
        self,
        source: Path,
        prefix: str,
        custom_suffix: str | None,
        output_path: Path | None,
        install: bool,
        device_id: str | None,
        cleanup_on_failure: bool,
    ) -> DisguiseResult:
        output_path = (output_path or default_output_path(source)).resolve()

        try:
            identifier = self._preflight(source, prefix, custom_suffix, output_path, install)
        except DisguiseError as e:
            logger.error("preflight failed: %s", e)
            return DisguiseResult(success=False, message=str(e), error_type=type(e).__name__)

        try:
            work_dir = Path(tempfile.mkdtemp(prefix=WORKDIR_PREFIX, dir=self.work_root))
        except OSError as e:
            error = ConfigurationError(f"Cannot create working directory: {e}")
            return DisguiseResult(success=False, message=str(error), error_type=type(error).__name__)

        run = PipelineRun(
            source_artifact_path=source,
            working_directory=work_dir,
            target_identifier=identifier,
        )
        logger.info("run %s -> %s in %s", source.name, identifier.name, work_dir)

        try:
            self._decompile(run)
            self._patch_manifest(run)
            rebuilt = self._rebuild(run)
            aligned = self._align(run, rebuilt)
            final = self._sign(run, aligned, output_path)
            if install:
                self._install(run, device_id)
        except DisguiseError as e:
            return self._failed(run, e, cleanup_on_failure)
        except OSError as e:
            error = ConfigurationError(f"Filesystem error in {work_dir}: {e}")
            return self._failed(run, error, cleanup_on_failure)

        shutil.rmtree(work_dir, ignore_errors=True)

        if install:
            message = f"Installed {identifier.name} on {device_id}"
        else:
            message = f"Repackaged as {identifier.name}"
        logger.info("%s: %s", message, final)

        return DisguiseResult(
            success=True,
            message=message,
            output_artifact_path=final,
            package_name=identifier.name,
            stages_completed=list(run.stages_completed),
            reports=list(run.reports),
        )

    def _failed(
        self,
        run: PipelineRun,
        error: DisguiseError,
        cleanup: bool,
    ) -> DisguiseResult:
        stage = getattr(error, "stage", None) or self._stage
        output = getattr(error, "output", "")
        run.last_error = str(error)

        if stage is not None and not any(r.stage == stage for r in run.reports):
            run.reports.append(StageReport(stage=stage, stderr=output or str(error)))

        logger.error("stage %s failed: %s", stage, error)

        kept: Path | None = run.working_directory
        if cleanup or isinstance(error, RunCancelledError):
            shutil.rmtree(run.working_directory, ignore_errors=True)
            kept = None

        return DisguiseResult(
            success=False,
            message=str(error),
            output_artifact_path=run.final_artifact_path,
            package_name=run.target_identifier.name,
            stages_completed=list(run.stages_completed),
            failed_stage=Stage(stage) if stage else None,
            error_type=type(error).__name__,
            reports=list(run.reports),
            working_directory=kept,
        )


def process_apk(
    request: DisguiseRequest,
    bridge: DeviceBridge | None = None,
    runner: ToolRunner = run_tool,
    progress: ProgressCallback | None = None,
) -> DisguiseResult:
    """Single entry point for a front end: one request, one result.

    Only one call runs at a time in the process, whichever executor it
    builds; a concurrent call is rejected rather than queued.

    Raises:
        PipelineBusyError: If another process_apk call is running.
    """
    if not _ENTRY_LOCK.acquire(blocking=False):
        raise PipelineBusyError("A pipeline run is already active")

    try:
        executor = PipelineExecutor(
            request.tool_paths,
            signing=request.signing,
            bridge=bridge,
            runner=runner,
            progress=progress,
        )
        return executor.run(
            request.source_artifact_path,
            request.prefix,
            request.custom_suffix,
            output_path=request.output_path,
            install_after=request.install_after,
            device_id=request.target_device_id,
            cleanup_on_failure=request.cleanup_on_failure,
        )
    finally:
        _ENTRY_LOCK.release()
