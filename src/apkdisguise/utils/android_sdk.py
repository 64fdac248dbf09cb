"""Locating zipalign and apksigner inside an Android SDK install."""

import os
import platform
from pathlib import Path

MIN_BUILD_TOOLS_VERSION = (30, 0, 0)

# Where SDK managers put the SDK when no environment variable says otherwise
SDK_LOCATIONS: dict[str, tuple[str, ...]] = {
    "Darwin": ("~/Library/Android/sdk", "/opt/android-sdk"),
    "Linux": ("~/Android/Sdk", "~/android-sdk", "/opt/android-sdk"),
    "Windows": ("~/AppData/Local/Android/Sdk", "C:/Android/sdk"),
}

# build-tools binaries and their per-platform file names
BUILD_TOOL_NAMES: dict[str, dict[str, str]] = {
    "zipalign": {"Windows": "zipalign.exe", "default": "zipalign"},
    "apksigner": {"Windows": "apksigner.bat", "default": "apksigner"},
}


def get_android_home() -> Path | None:
    """Find the SDK root from ANDROID_HOME, ANDROID_SDK_ROOT or the usual spots."""
    candidates = [os.environ.get(var) for var in ("ANDROID_HOME", "ANDROID_SDK_ROOT")]
    candidates.extend(SDK_LOCATIONS.get(platform.system(), ()))

    for candidate in candidates:
        if candidate and (path := Path(candidate).expanduser()).is_dir():
            return path
    return None


def _version_of(directory: Path) -> tuple[int, ...] | None:
    try:
        return tuple(int(part) for part in directory.name.split("."))
    except ValueError:
        # rc builds such as "35.0.0-rc1"
        return None


def get_build_tools_path(
    min_version: tuple[int, ...] = MIN_BUILD_TOOLS_VERSION,
) -> Path | None:
    """Newest ``build-tools/<version>`` directory at or above min_version.

    Returns:
        The directory, or None when there is no SDK or no suitable version.
    """
    android_home = get_android_home()
    if android_home is None:
        return None

    build_tools_dir = android_home / "build-tools"
    if not build_tools_dir.is_dir():
        return None

    versions = [
        (version, entry)
        for entry in build_tools_dir.iterdir()
        if entry.is_dir() and (version := _version_of(entry)) and version >= min_version
    ]
    if not versions:
        return None
    return max(versions)[1]


def find_build_tool(name: str) -> Path | None:
    """Locate a binary (zipalign, apksigner) in the newest build-tools.

    Args:
        name: Key of BUILD_TOOL_NAMES.

    Returns:
        Path to the binary, or None if not installed.
    """
    names = BUILD_TOOL_NAMES.get(name)
    build_tools = get_build_tools_path() if names else None
    if build_tools is None:
        return None

    candidate = build_tools / names.get(platform.system(), names["default"])
    return candidate if candidate.is_file() else None
