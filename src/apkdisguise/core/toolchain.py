"""Locating the external tools and key material a run needs."""

from __future__ import annotations

import logging
import os
import platform
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from apkdisguise.exceptions import ConfigurationError, ProcessError, ToolNotFoundError
from apkdisguise.models.apk import SigningConfig, ToolPaths
from apkdisguise.utils.android_sdk import find_build_tool
from apkdisguise.utils.config import CONFIG_DIR, get_config_str
from apkdisguise.utils.process import run_tool

logger = logging.getLogger(__name__)

IS_WINDOWS = platform.system() == "Windows"

TOOLS_DIR_CONFIG_KEY: Final[str] = "tools_dir"
DEFAULT_TOOLS_DIR: Final[Path] = Path(__file__).resolve().parent.parent / "tools"
DEFAULT_KEYSTORE: Final[Path] = CONFIG_DIR / "release-key.jks"

# Install hints for required tools
TOOL_INSTALL_HINTS: dict[str, str] = {
    "decompiler": "https://apktool.org/ (place apktool.jar in the tools directory or on PATH)",
    "aligner": "Part of Android SDK build-tools (set ANDROID_HOME)",
    "signer": "Part of Android SDK build-tools (set ANDROID_HOME)",
    "keystore": (
        "keytool -genkeypair -v -keystore release-key.jks -keyalg RSA "
        "-keysize 2048 -validity 10000 -alias my-alias, or `apkdisguise tools keystore`"
    ),
    "shell": "https://developer.android.com/tools/releases/platform-tools",
    "java": "Install a Java runtime and ensure it's on PATH (or set JAVA_HOME)",
}


@dataclass(frozen=True)
class ToolSpec:
    """How to find one entry of ToolPaths."""

    field: str
    config_key: str
    bundled_names: tuple[str, ...]
    path_names: tuple[str, ...] = ()
    sdk_name: str | None = None


def _exe(name: str) -> str:
    return f"{name}.exe" if IS_WINDOWS else name


TOOL_SPECS: dict[str, ToolSpec] = {
    "decompiler": ToolSpec(
        "decompiler_path", "apktool_path", ("apktool.jar", "apktool"), ("apktool",)
    ),
    "aligner": ToolSpec(
        "aligner_path", "zipalign_path", (_exe("zipalign"),), ("zipalign",), "zipalign"
    ),
    "signer": ToolSpec(
        "signer_path",
        "apksigner_path",
        ("apksigner.jar", "apksigner.bat" if IS_WINDOWS else "apksigner"),
        ("apksigner",),
        "apksigner",
    ),
    "keystore": ToolSpec("keystore_path", "keystore_path", ("release-key.jks",)),
    "shell": ToolSpec("shell_path", "adb_path", (_exe("adb"),), ("adb",)),
    "java": ToolSpec("java_path", "java_path", (), ("java",)),
}


def is_jar(path: str) -> bool:
    """Check whether a tool path needs the Java launcher."""
    return path.lower().endswith(".jar")


def tool_command(path: str, java_path: str = "") -> list[str]:
    """Build the argv prefix that launches a tool.

    Args:
        path: Resolved tool path.
        java_path: Java launcher, used for .jar tools.

    Returns:
        ``[java, -jar, path]`` for jars, else ``[path]``.
    """
    if is_jar(path):
        return [java_path or "java", "-jar", path]
    return [path]


class ToolchainResolver:
    """Best-effort lookup of ToolPaths.

    Per tool the probe order is: explicit override, environment or config
    file, bundled tools directory, PATH, then Android SDK build-tools.
    Nothing raises; a tool that is not found resolves to "".
    """

    def __init__(
        self,
        overrides: dict[str, str | Path | None] | None = None,
        tools_dir: Path | None = None,
        use_config: bool = True,
    ):
        """Initialize resolver.

        Args:
            overrides: Explicit paths keyed by TOOL_SPECS name (decompiler,
                aligner, signer, keystore, shell, java).
            tools_dir: Bundled resources directory. Defaults to config
                ``tools_dir`` or the package ``tools/`` directory.
            use_config: If False, ignore environment and config file values.
        """
        self.overrides = {k: v for k, v in (overrides or {}).items() if v}
        self.use_config = use_config
        if tools_dir is None and use_config:
            configured = get_config_str(TOOLS_DIR_CONFIG_KEY)
            tools_dir = Path(configured).expanduser() if configured else None
        self.tools_dir = tools_dir or DEFAULT_TOOLS_DIR

    def _probe_override(self, name: str, spec: ToolSpec) -> str | None:
        candidates: list[str | Path | None] = [self.overrides.get(name)]
        if self.use_config:
            candidates.append(get_config_str(spec.config_key))

        for candidate in candidates:
            if not candidate:
                continue
            path = Path(candidate).expanduser()
            if path.is_file():
                return str(path)
            # Bare command names like "java" are looked up on PATH
            if path.name == str(candidate) and (found := shutil.which(str(candidate))):
                return found
            logger.debug("%s override %s does not exist", name, candidate)
        return None

    def _probe_bundled(self, spec: ToolSpec) -> str | None:
        for filename in spec.bundled_names:
            candidate = self.tools_dir / filename
            if candidate.is_file():
                return str(candidate)
        return None

    def _probe_path(self, spec: ToolSpec) -> str | None:
        for command in spec.path_names:
            if found := shutil.which(command):
                return found
        return None

    def _probe_java_home(self) -> str | None:
        java_home = os.environ.get("JAVA_HOME")
        if not java_home:
            return None
        candidate = Path(java_home) / "bin" / _exe("java")
        return str(candidate) if candidate.is_file() else None

    def resolve_one(self, name: str) -> str:
        """Resolve a single tool by TOOL_SPECS name, "" if not found."""
        spec = TOOL_SPECS[name]
        found = (
            self._probe_override(name, spec)
            or self._probe_bundled(spec)
            or self._probe_path(spec)
        )
        if not found and spec.sdk_name:
            sdk_path = find_build_tool(spec.sdk_name)
            found = str(sdk_path) if sdk_path else None
        if not found and name == "java":
            found = self._probe_java_home()

        logger.debug("resolved %s: %s", name, found or "<missing>")
        return found or ""

    def resolve(self) -> ToolPaths:
        """Resolve every tool."""
        return ToolPaths(**{spec.field: self.resolve_one(name) for name, spec in TOOL_SPECS.items()})


def _usable_executable(path: str) -> bool:
    candidate = Path(path)
    if not candidate.is_file():
        return False
    if is_jar(path) or IS_WINDOWS:
        return True
    return os.access(candidate, os.X_OK)


def find_problems(paths: ToolPaths, install: bool = False) -> list[tuple[str, str]]:
    """List what prevents a run from starting.

    Args:
        paths: Resolved tool paths.
        install: Whether the run will install to a device.

    Returns:
        (tool name, description) pairs; empty when the toolchain is usable.
    """
    needed = ["decompiler", "aligner", "signer"]
    if install:
        needed.append("shell")

    problems: list[tuple[str, str]] = []
    needs_java = False

    for name in needed:
        value = getattr(paths, TOOL_SPECS[name].field)
        if not value:
            problems.append((name, "not configured"))
        elif not _usable_executable(value):
            problems.append((name, f"not an executable file: {value}"))
        elif is_jar(value):
            needs_java = True

    if not paths.keystore_path:
        problems.append(("keystore", "not configured"))
    elif not os.access(paths.keystore_path, os.R_OK) or not Path(paths.keystore_path).is_file():
        problems.append(("keystore", f"not a readable file: {paths.keystore_path}"))

    if needs_java and not (paths.java_path and _usable_executable(paths.java_path)):
        problems.append(("java", "required to run .jar tools but not found"))

    return problems


def require_toolchain(paths: ToolPaths, install: bool = False) -> None:
    """Raise ConfigurationError if find_problems() reports anything.

    Raises:
        ToolNotFoundError: If exactly one tool is missing.
        ConfigurationError: If several are.
    """
    problems = find_problems(paths, install=install)
    if not problems:
        return

    if len(problems) == 1:
        name, description = problems[0]
        raise ToolNotFoundError(f"{name} ({description})", TOOL_INSTALL_HINTS.get(name))

    lines = [f"  {name}: {description}" for name, description in problems]
    raise ConfigurationError("Toolchain is incomplete:\n" + "\n".join(lines))


def generate_keystore(
    keystore_path: Path = DEFAULT_KEYSTORE,
    signing: SigningConfig | None = None,
    keytool: str | None = None,
) -> Path:
    """Generate an RSA keystore usable by the signer stage.

    Args:
        keystore_path: Where to write the keystore. Existing files are kept.
        signing: Alias and passwords to create the key with.
        keytool: keytool executable. Defaults to PATH lookup.

    Returns:
        Path to the keystore.

    Raises:
        ToolNotFoundError: If keytool is not available.
        ConfigurationError: If keystore generation fails.
    """
    signing = signing or SigningConfig()

    if keystore_path.is_file():
        return keystore_path

    keytool = keytool or shutil.which("keytool")
    if not keytool:
        raise ToolNotFoundError("keytool", TOOL_INSTALL_HINTS["java"])

    try:
        keystore_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigurationError(f"Cannot create {keystore_path.parent}: {e}") from e

    cmd = [
        keytool,
        "-genkeypair",
        "-v",
        "-keystore",
        str(keystore_path),
        "-alias",
        signing.key_alias,
        "-keyalg",
        "RSA",
        "-keysize",
        "2048",
        "-validity",
        "10000",
        "-storepass",
        signing.keystore_pass,
        "-keypass",
        signing.key_pass,
        "-dname",
        "CN=Debug, OU=Debug, O=Debug, L=Debug, ST=Debug, C=US",
    ]

    try:
        run_tool(cmd, check=True)
    except ProcessError as e:
        raise ConfigurationError(f"Failed to generate keystore: {e}") from e

    if not keystore_path.is_file():
        raise ConfigurationError(
            f"Keystore generation completed but file not found: {keystore_path}"
        )

    return keystore_path
