"""Structural patching of a decoded AndroidManifest.xml."""

import logging
import xml.etree.ElementTree as ET
from pathlib import Path

from pydantic import BaseModel

from apkdisguise.exceptions import ManifestMalformedError, ManifestNotFoundError
from apkdisguise.models.apk import PackageIdentifier

logger = logging.getLogger(__name__)

MANIFEST_NAME = "AndroidManifest.xml"

ANDROID_NS = "http://schemas.android.com/apk/res/android"
ANDROID_NAME = f"{{{ANDROID_NS}}}name"
ANDROID_TARGET_ACTIVITY = f"{{{ANDROID_NS}}}targetActivity"
ANDROID_PARENT_ACTIVITY = f"{{{ANDROID_NS}}}parentActivityName"
ANDROID_BACKUP_AGENT = f"{{{ANDROID_NS}}}backupAgent"
ANDROID_MANAGE_SPACE = f"{{{ANDROID_NS}}}manageSpaceActivity"
ANDROID_MIN_SDK = f"{{{ANDROID_NS}}}minSdkVersion"
ANDROID_TARGET_SDK = f"{{{ANDROID_NS}}}targetSdkVersion"

DEFAULT_MIN_SDK = "19"
DEFAULT_TARGET_SDK = "27"

# Elements whose class attributes are resolved against the manifest package
COMPONENT_TAGS = (
    "application",
    "activity",
    "activity-alias",
    "service",
    "receiver",
    "provider",
    "instrumentation",
)

# Attributes holding class names that may be relative to the package
CLASS_ATTRIBUTES = (
    ANDROID_NAME,
    ANDROID_TARGET_ACTIVITY,
    ANDROID_PARENT_ACTIVITY,
    ANDROID_BACKUP_AGENT,
    ANDROID_MANAGE_SPACE,
)


class ManifestPatchResult(BaseModel):
    """What patch() changed."""

    manifest_path: Path
    original_package: str
    new_package: str
    injected_uses_sdk: bool = False
    expanded_names: int = 0


def _qualify(name: str, package: str) -> str:
    if name.startswith("."):
        return package + name
    if "." not in name:
        return f"{package}.{name}"
    return name


class ManifestPatcher:
    """Rewrites the package attribute and pins a minimum SDK."""

    def __init__(
        self,
        min_sdk: str = DEFAULT_MIN_SDK,
        target_sdk: str = DEFAULT_TARGET_SDK,
    ):
        self.min_sdk = min_sdk
        self.target_sdk = target_sdk

    def _parse(self, manifest_path: Path) -> ET.ElementTree:
        if not manifest_path.is_file():
            raise ManifestNotFoundError(f"Manifest not found: {manifest_path}")

        # Keep every namespace prefix the file declares, not just android:
        try:
            for _, (prefix, uri) in ET.iterparse(manifest_path, events=("start-ns",)):
                if prefix:
                    try:
                        ET.register_namespace(prefix, uri)
                    except ValueError:
                        # ns0-style prefixes are reserved by ElementTree
                        continue
            parser = ET.XMLParser(target=ET.TreeBuilder(insert_comments=True))
            tree = ET.parse(manifest_path, parser=parser)
        except ET.ParseError as e:
            raise ManifestMalformedError(f"Cannot parse {manifest_path}: {e}") from e

        root = tree.getroot()
        if root.tag != "manifest":
            raise ManifestMalformedError(
                f"Root element is <{root.tag}>, expected <manifest>: {manifest_path}"
            )
        if not root.get("package"):
            raise ManifestMalformedError(
                f"<manifest> has no package attribute: {manifest_path}"
            )
        return tree

    def read_package(self, manifest_path: Path) -> str:
        """Return the package attribute of the manifest root element."""
        return self._parse(manifest_path).getroot().get("package", "")

    def _expand_component_names(self, root: ET.Element, package: str) -> int:
        expanded = 0
        for element in root.iter():
            if element.tag not in COMPONENT_TAGS:
                continue
            for attr in CLASS_ATTRIBUTES:
                value = element.get(attr)
                if not value:
                    continue
                qualified = _qualify(value, package)
                if qualified != value:
                    element.set(attr, qualified)
                    expanded += 1
        return expanded

    def _ensure_uses_sdk(self, root: ET.Element) -> bool:
        uses_sdk = root.find("uses-sdk")
        if uses_sdk is not None:
            if uses_sdk.get(ANDROID_MIN_SDK) is None:
                uses_sdk.set(ANDROID_MIN_SDK, self.min_sdk)
            return False

        uses_sdk = ET.Element(
            "uses-sdk",
            {ANDROID_MIN_SDK: self.min_sdk, ANDROID_TARGET_SDK: self.target_sdk},
        )
        children = list(root)
        application = root.find("application")
        index = children.index(application) if application is not None else len(children)
        uses_sdk.tail = "\n    "
        root.insert(index, uses_sdk)
        return True

    def patch(self, manifest_path: Path, identifier: PackageIdentifier) -> ManifestPatchResult:
        """Rename the package in place.

        Relative component names are first qualified with the original
        package so the renamed manifest still points at the original classes.

        Args:
            manifest_path: Decoded AndroidManifest.xml.
            identifier: New package identity.

        Returns:
            ManifestPatchResult describing the edit.

        Raises:
            ManifestNotFoundError: If the file does not exist.
            ManifestMalformedError: If the package attribute cannot be located.
        """
        tree = self._parse(manifest_path)
        root = tree.getroot()
        original = root.get("package", "")

        expanded = self._expand_component_names(root, original)
        root.set("package", identifier.name)
        injected = self._ensure_uses_sdk(root)

        tree.write(manifest_path, encoding="utf-8", xml_declaration=True)
        logger.info(
            "manifest package %s -> %s (%d names qualified, uses-sdk %s)",
            original,
            identifier.name,
            expanded,
            "injected" if injected else "kept",
        )

        return ManifestPatchResult(
            manifest_path=manifest_path,
            original_package=original,
            new_package=identifier.name,
            injected_uses_sdk=injected,
            expanded_names=expanded,
        )
