"""CLI command for the repackaging pipeline."""

import json
from contextlib import nullcontext
from pathlib import Path

import typer

from apkdisguise.core.adb import DeviceBridge
from apkdisguise.core.pipeline import PipelineExecutor
from apkdisguise.core.prefixes import RECOMMENDED_PREFIXES
from apkdisguise.core.toolchain import ToolchainResolver
from apkdisguise.exceptions import DisguiseError
from apkdisguise.models.apk import SigningConfig
from apkdisguise.models.pipeline import Stage, StageReport
from apkdisguise.utils.config import get_config_str
from apkdisguise.utils.output import console


def signing_from_config(
    key_alias: str | None,
    keystore_pass: str | None,
    key_pass: str | None,
    v2: bool,
) -> SigningConfig:
    """Merge CLI options over config file values over defaults."""
    defaults = SigningConfig()
    return SigningConfig(
        key_alias=key_alias or get_config_str("key_alias", defaults.key_alias),
        keystore_pass=keystore_pass or get_config_str("keystore_pass", defaults.keystore_pass),
        key_pass=key_pass or get_config_str("key_pass", defaults.key_pass),
        v2_enabled=v2,
    )


def run_pipeline(
    apk_path: Path = typer.Argument(
        ...,
        help="Path to the APK to repackage.",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    prefix: str = typer.Option(
        None,
        "--prefix",
        "-p",
        help="Trusted package prefix (default: config default_prefix or cn.chinapost).",
    ),
    suffix: str = typer.Option(
        None,
        "--suffix",
        "-s",
        help="Package suffix (default: derived from the APK file name).",
    ),
    output: Path = typer.Option(
        None,
        "--output",
        "-o",
        help="Output APK path (default: <apk>_disguised.apk).",
    ),
    install: bool = typer.Option(
        False,
        "--install",
        "-i",
        help="Install the result on a device (replaces existing).",
    ),
    device: str = typer.Option(
        None,
        "--device",
        "-d",
        help="Target device ID (for --install).",
    ),
    keystore: Path = typer.Option(
        None,
        "--keystore",
        "-k",
        help="Keystore file (default: resolved like the tools).",
    ),
    key_alias: str = typer.Option(None, "--key-alias", help="Key alias in keystore."),
    keystore_pass: str = typer.Option(None, "--keystore-pass", help="Keystore password."),
    key_pass: str = typer.Option(None, "--key-pass", help="Key password."),
    v2: bool = typer.Option(
        False,
        "--v2",
        help="Also add a v2 signature (v1 is always added).",
    ),
    apktool: Path = typer.Option(None, "--apktool", help="apktool jar or script."),
    zipalign: Path = typer.Option(None, "--zipalign", help="zipalign binary."),
    apksigner: Path = typer.Option(None, "--apksigner", help="apksigner jar or script."),
    java: Path = typer.Option(None, "--java", help="Java launcher for .jar tools."),
    adb: Path = typer.Option(None, "--adb", help="adb client."),
    clean_on_failure: bool = typer.Option(
        False,
        "--clean-on-failure",
        help="Remove the working directory even when a stage fails.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON.",
    ),
) -> None:
    """Repackage an APK under a trusted package name.

    Workflow: apktool d -> patch manifest -> apktool b -> zipalign -> apksigner
    (v1) -> adb install (optional).

    Examples:

        # Derive the name from the file: cn.chinapost.sample
        apkdisguise run sample.apk

        # Custom prefix and suffix
        apkdisguise run app.apk -p com.nlscan -s scanner

        # Repackage and install on the only connected device
        apkdisguise run app.apk --install
    """
    console.set_json_mode(json_output)

    try:
        resolver = ToolchainResolver(
            overrides={
                "decompiler": apktool,
                "aligner": zipalign,
                "signer": apksigner,
                "keystore": keystore,
                "java": java,
                "shell": adb,
            }
        )
        paths = resolver.resolve()
        signing = signing_from_config(key_alias, keystore_pass, key_pass, v2)
        prefix = prefix or get_config_str("default_prefix", RECOMMENDED_PREFIXES[0])

        bridge: DeviceBridge | None = None
        if install:
            bridge = DeviceBridge(adb_path=paths.shell_path or "adb")
            device = bridge.ensure_device(device).id

        def on_stage(stage: Stage, report: StageReport) -> None:
            console.print_success(f"{stage}")
            if report.output:
                console.print_verbose(report.output)

        executor = PipelineExecutor(paths, signing=signing, bridge=bridge, progress=on_stage)

        if not json_output:
            console.print_info(f"Repackaging {apk_path.name}...")

        with console.status("Running pipeline...") if not json_output else nullcontext():
            result = executor.run(
                apk_path,
                prefix,
                suffix,
                output_path=output,
                install_after=install,
                device_id=device,
                cleanup_on_failure=clean_on_failure,
            )

        if json_output:
            typer.echo(json.dumps(result.model_dump(mode="json"), indent=2))
            if not result.success:
                raise typer.Exit(1)
            return

        if not result.success:
            where = f" at {result.failed_stage}" if result.failed_stage else ""
            console.print_error(f"Failed{where}: {result.message}")
            failed = [r for r in result.reports if r.stage == result.failed_stage]
            if failed and failed[-1].output:
                console.print_verbose(failed[-1].output)
            if result.working_directory:
                console.print_info(f"Working directory kept: {result.working_directory}")
            raise typer.Exit(1)

        console.print_success(result.message)
        console.print_info(f"Output: {result.output_artifact_path}")

    except DisguiseError as e:
        console.print_error(str(e))
        raise typer.Exit(1) from None
