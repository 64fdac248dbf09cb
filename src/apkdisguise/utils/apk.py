"""Checks on source APK files that run before any tool is spawned."""

import logging
from pathlib import Path

from apkdisguise.exceptions import DisguiseError, ValidationError

logger = logging.getLogger(__name__)

# APKs are ZIP archives
ZIP_FILE_HEADER = b"PK\x03\x04"


def validate_apk_path(
    apk_path: Path,
    *,
    require_zip_header: bool = False,
    error_cls: type[DisguiseError] = ValidationError,
) -> None:
    """Reject paths that cannot be a readable APK.

    The path must be an existing regular file with an ``.apk`` extension
    and, when require_zip_header is set, must start with the ZIP signature.

    Args:
        apk_path: Candidate APK.
        require_zip_header: Also read and check the first four bytes.
        error_cls: Exception class raised on the first failed check.

    Raises:
        DisguiseError (or subclass): If a check fails.
    """
    if not apk_path.is_file():
        reason = "Not a file" if apk_path.exists() else "APK not found"
        raise error_cls(f"{reason}: {apk_path}")

    if apk_path.suffix.lower() != ".apk":
        raise error_cls(f"Expected a .apk file: {apk_path}")

    if not require_zip_header:
        return

    try:
        with apk_path.open("rb") as f:
            header = f.read(len(ZIP_FILE_HEADER))
    except OSError as e:
        raise error_cls(f"Cannot read {apk_path}: {e}") from e

    if header != ZIP_FILE_HEADER:
        raise error_cls(f"{apk_path.name} is not a ZIP archive (header {header!r})")


def read_package_name(apk_path: Path) -> str | None:
    """Read the package name from an APK's binary manifest.

    Uses pyaxmlparser in-process, so no external tool is spawned. This is a
    best-effort probe: any parse failure yields None and the caller falls
    back to the decoded manifest later on.

    Args:
        apk_path: Path to the APK file.

    Returns:
        Package name (e.g., 'com.example.app'), or None if unreadable.
    """
    try:
        from pyaxmlparser import APK  # type: ignore[import-untyped]

        apk = APK(str(apk_path))
        if apk.package:
            return str(apk.package)
    except Exception as e:
        logger.debug("pyaxmlparser could not read %s: %s", apk_path, e)

    return None
