"""Pydantic models for pipeline runs and their results."""

from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, Field

from apkdisguise.models.apk import PackageIdentifier, SigningConfig, ToolPaths


class Stage(StrEnum):
    """Pipeline stage tags, in execution order."""

    DECOMPILED = "Decompiled"
    MANIFEST_PATCHED = "ManifestPatched"
    REBUILT = "Rebuilt"
    ALIGNED = "Aligned"
    SIGNED = "Signed"
    INSTALLED = "Installed"

    @classmethod
    def ordered(cls, install: bool = False) -> list["Stage"]:
        """Stages a run executes, optionally including the install step."""
        stages = list(cls)
        if not install:
            stages.remove(cls.INSTALLED)
        return stages


class StageReport(BaseModel):
    """What happened during one stage."""

    stage: Stage
    command: list[str] = Field(default_factory=list)
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    """Wall-clock seconds."""

    @property
    def output(self) -> str:
        """Raw tool output, stdout then stderr."""
        return "\n".join(p for p in (self.stdout.strip(), self.stderr.strip()) if p)


class PipelineRun(BaseModel):
    """Mutable state of a single run, owned by the executor."""

    source_artifact_path: Path
    working_directory: Path
    target_identifier: PackageIdentifier
    original_identifier: str | None = None
    stages_completed: list[Stage] = Field(default_factory=list)
    last_error: str | None = None
    final_artifact_path: Path | None = None
    reports: list[StageReport] = Field(default_factory=list)

    def complete(self, stage: Stage) -> None:
        """Record a finished stage, enforcing strict order."""
        order = list(Stage)
        expected = order[len(self.stages_completed)]
        if stage != expected:
            raise RuntimeError(f"Stage {stage} completed out of order, expected {expected}")
        self.stages_completed.append(stage)


class DisguiseRequest(BaseModel):
    """Input of the single repackaging entry point."""

    source_artifact_path: Path
    prefix: str
    custom_suffix: str | None = None
    install_after: bool = False
    target_device_id: str | None = None
    tool_paths: ToolPaths
    output_path: Path | None = None
    """Where the signed APK is copied; default <source dir>/<stem>_disguised.apk."""
    signing: SigningConfig = Field(default_factory=SigningConfig)
    cleanup_on_failure: bool = False


class DisguiseResult(BaseModel):
    """Outcome of a repackaging run."""

    success: bool
    message: str
    output_artifact_path: Path | None = None
    package_name: str | None = None
    stages_completed: list[Stage] = Field(default_factory=list)
    failed_stage: Stage | None = None
    error_type: str | None = None
    reports: list[StageReport] = Field(default_factory=list)
    working_directory: Path | None = None
    """Kept for inspection when a run fails."""
