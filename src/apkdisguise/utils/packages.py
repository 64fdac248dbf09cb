"""Helpers for interpreting `pm list packages` output."""

import re

# Read-only partitions whose APKs the device treats as system packages
SYSTEM_PATH_PREFIXES: tuple[str, ...] = (
    "/system/",
    "/system_ext/",
    "/product/",
    "/vendor/",
    "/odm/",
    "/oem/",
    "/apex/",
)


def parse_package_line(line: str) -> tuple[str, str | None] | None:
    """Parse one `pm list packages [-f]` line.

    Handles both ``package:com.example.app`` and
    ``package:/data/app/~~x==/com.example.app-1/base.apk=com.example.app``.
    The APK path may itself contain ``=``, so the name is split off the right.

    Returns:
        (package name, install path or None), or None for unrelated lines.
    """
    line = line.strip()
    if not line.startswith("package:"):
        return None

    content = line.split(":", 1)[1]
    if "=" in content:
        path, name = content.rsplit("=", 1)
        return name.strip(), path.strip() or None
    return content.strip(), None


def is_system_install_path(path: str | None) -> bool:
    """Check whether an APK path lives on a system partition."""
    if not path:
        return False
    return path.startswith(SYSTEM_PATH_PREFIXES)


def display_name_for(package_name: str) -> str:
    """Derive a readable name from the last package segment.

    ``com.example.barcodeScanner`` becomes ``barcode Scanner`` and
    underscores become spaces.
    """
    last = package_name.rsplit(".", 1)[-1]
    if not last:
        return package_name
    spaced = re.sub(r"(?<=.)([A-Z])", r" \1", last)
    return spaced.replace("_", " ")
